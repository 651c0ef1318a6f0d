from __future__ import annotations

from typing import List, Protocol, Tuple

import cv2
import numpy as np


class VisionBackend(Protocol):
    """
    Primitive image operations the recognition pipeline relies on.

    The pipeline only talks to this interface, so any vision library (or a
    test double returning fixtures) can stand in for OpenCV.
    """

    def to_gray(self, image: np.ndarray) -> np.ndarray: ...

    def normalize(self, gray: np.ndarray) -> np.ndarray: ...

    def gaussian_blur(self, gray: np.ndarray, ksize: int, sigma: float) -> np.ndarray: ...

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray: ...

    def dilate(self, binary: np.ndarray, ksize: int, iterations: int = 1) -> np.ndarray: ...

    def threshold_dark(self, gray: np.ndarray, block_size: int, offset: float) -> np.ndarray: ...

    def find_contours(self, binary: np.ndarray, nested: bool = False) -> List[np.ndarray]: ...

    def contour_area(self, contour: np.ndarray) -> float: ...

    def hull_area(self, contour: np.ndarray) -> float: ...

    def approx_polygon(self, contour: np.ndarray, epsilon_ratio: float) -> np.ndarray: ...

    def bounding_rect(self, contour: np.ndarray) -> Tuple[int, int, int, int]: ...

    def warp_perspective(
        self, image: np.ndarray, corners: np.ndarray, size: Tuple[int, int]
    ) -> np.ndarray: ...

    def resize(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray: ...

    def extract_region(self, gray: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> np.ndarray: ...

    def mean_stddev(self, gray: np.ndarray) -> Tuple[float, float]: ...


class OpenCVBackend:
    """VisionBackend backed by cv2."""

    def to_gray(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image.copy()
        channels = image.shape[2]
        if channels == 1:
            return image[:, :, 0].copy()
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        raise ValueError(f"unsupported channel count: {channels}")

    def normalize(self, gray: np.ndarray) -> np.ndarray:
        # Stretch to the full range; a flat image has nothing to stretch.
        lo, hi = float(gray.min()), float(gray.max())
        if hi - lo < 1.0:
            return gray.copy()
        return cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)

    def gaussian_blur(self, gray: np.ndarray, ksize: int, sigma: float) -> np.ndarray:
        return cv2.GaussianBlur(gray, (ksize, ksize), sigma)

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        return cv2.Canny(gray, low, high)

    def dilate(self, binary: np.ndarray, ksize: int, iterations: int = 1) -> np.ndarray:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (ksize, ksize))
        return cv2.dilate(binary, kernel, iterations=iterations)

    def threshold_dark(self, gray: np.ndarray, block_size: int, offset: float) -> np.ndarray:
        # Gaussian local mean minus offset; darker pixels become 255.
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV, block_size, offset
        )

    def find_contours(self, binary: np.ndarray, nested: bool = False) -> List[np.ndarray]:
        mode = cv2.RETR_LIST if nested else cv2.RETR_EXTERNAL
        contours, _ = cv2.findContours(binary, mode, cv2.CHAIN_APPROX_SIMPLE)
        return list(contours)

    def contour_area(self, contour: np.ndarray) -> float:
        return float(cv2.contourArea(contour))

    def hull_area(self, contour: np.ndarray) -> float:
        return float(cv2.contourArea(cv2.convexHull(contour)))

    def approx_polygon(self, contour: np.ndarray, epsilon_ratio: float) -> np.ndarray:
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, epsilon_ratio * perimeter, True)
        return approx.reshape(-1, 2)

    def bounding_rect(self, contour: np.ndarray) -> Tuple[int, int, int, int]:
        x, y, w, h = cv2.boundingRect(contour)
        return int(x), int(y), int(w), int(h)

    def warp_perspective(
        self, image: np.ndarray, corners: np.ndarray, size: Tuple[int, int]
    ) -> np.ndarray:
        # corners: [tl, tr, bl, br]
        out_w, out_h = size
        dst = np.array(
            [
                [0, 0],
                [out_w - 1, 0],
                [0, out_h - 1],
                [out_w - 1, out_h - 1],
            ],
            dtype="float32",
        )
        transform = cv2.getPerspectiveTransform(np.asarray(corners, dtype="float32"), dst)
        return cv2.warpPerspective(image, transform, (out_w, out_h))

    def resize(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)

    def extract_region(self, gray: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> np.ndarray:
        return gray[y0:y1, x0:x1].copy()

    def mean_stddev(self, gray: np.ndarray) -> Tuple[float, float]:
        mean, std = cv2.meanStdDev(gray)
        return float(mean[0][0]), float(std[0][0])
