from __future__ import annotations

from typing import Callable, Iterable

import numpy as np
import pytest

from sheet_omr.backend import OpenCVBackend
from sheet_omr.geometry import BubbleRegion
from sheet_omr.types import SheetConfig


@pytest.fixture
def blank_sheet() -> Callable[..., np.ndarray]:
    def make(width: int = 700, height: int = 700, value: int = 255) -> np.ndarray:
        return np.full((height, width), value, dtype=np.uint8)

    return make


@pytest.fixture
def darken() -> Callable[..., None]:
    """Paint bubbles solid, a little beyond their box to cover the read margin."""

    def paint(image: np.ndarray, regions: Iterable[BubbleRegion], value: int = 0, pad: int = 3) -> None:
        for region in regions:
            y0 = max(0, region.y - pad)
            x0 = max(0, region.x - pad)
            image[y0 : region.y + region.height + pad, x0 : region.x + region.width + pad] = value

    return paint


@pytest.fixture
def five_questions() -> SheetConfig:
    return SheetConfig(section1_count=5)


class BrokenContoursBackend(OpenCVBackend):
    def find_contours(self, binary, nested=False):
        raise RuntimeError("contour finder crashed")


class BrokenRegionBackend(OpenCVBackend):
    def extract_region(self, gray, x0, y0, x1, y1):
        raise RuntimeError("corrupt pixel access")


@pytest.fixture
def broken_contours_backend() -> OpenCVBackend:
    return BrokenContoursBackend()


@pytest.fixture
def broken_region_backend() -> OpenCVBackend:
    return BrokenRegionBackend()


MARKER_SIDE = 24
MARKER_CENTERS = ((40, 40), (760, 40), (40, 960), (760, 960))


@pytest.fixture
def marker_sheet(blank_sheet) -> Callable[[], np.ndarray]:
    """800x1000 sheet with solid square corner markers centred on MARKER_CENTERS."""

    def make() -> np.ndarray:
        image = blank_sheet(800, 1000)
        half = MARKER_SIDE // 2
        for cx, cy in MARKER_CENTERS:
            image[cy - half : cy + half, cx - half : cx + half] = 0
        return image

    return make


DESK_LEVEL = 40


@pytest.fixture
def on_desk() -> Callable[..., np.ndarray]:
    """Paste a sheet onto a larger, darker background as a phone photo would show it."""

    def place(sheet: np.ndarray, width: int = 1100, height: int = 1200, left: int = 150, top: int = 100) -> np.ndarray:
        photo = np.full((height, width), DESK_LEVEL, dtype=np.uint8)
        photo[top : top + sheet.shape[0], left : left + sheet.shape[1]] = sheet
        return photo

    return place
