from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from .backend import OpenCVBackend, VisionBackend
from .errors import AlignmentError
from .geometry import Point, Rect, bounding_rect, distance, group_by_proximity, order_corners, scaled_tolerance
from .types import RecognitionParams


logger = logging.getLogger(__name__)

# Corner markers are searched in the outer 30% of each axis.
CORNER_ZONE_RATIO = 0.30
CORNER_ASPECT = (0.5, 2.0)
EDGE_ASPECT = (0.3, 3.0)
MIN_MARKER_SOLIDITY = 0.7
MARKER_BLOCK_SIZE = 11
MARKER_THRESHOLD_OFFSET = 2
# A printed square and the hole of its outline ring share one centre.
SAME_MARKER_PX = 2.0
CORNER_NAMES = ("tl", "tr", "bl", "br")


@dataclass(frozen=True)
class MarkerSet:
    corners: Dict[str, Point] = field(default_factory=dict)
    edges: Tuple[Point, ...] = ()
    edge_rows: int = 0

    @property
    def complete(self) -> bool:
        return all(name in self.corners for name in CORNER_NAMES)

    def bounds(self) -> Optional[Rect]:
        if not self.complete:
            return None
        return bounding_rect(self.corners[name] for name in CORNER_NAMES)


@dataclass
class Alignment:
    """
    Where the sheet is. `image` is the working grayscale image every bubble
    region refers to; `mode` is one of markers / contour / skipped / fallback.
    """

    mode: str
    image: np.ndarray
    bounds: Rect
    corners: Optional[np.ndarray] = None
    markers: Optional[MarkerSet] = None

    @property
    def degraded(self) -> bool:
        return self.mode == "fallback"

    def meta(self) -> Dict[str, object]:
        return {
            "mode": self.mode,
            "bounds": [self.bounds.x, self.bounds.y, self.bounds.width, self.bounds.height],
            "cornerPoints": self.corners.tolist() if self.corners is not None else None,
            "cornerMarkers": len(self.markers.corners) if self.markers else 0,
            "edgeMarkers": len(self.markers.edges) if self.markers else 0,
            "edgeRows": self.markers.edge_rows if self.markers else 0,
        }


def _corner_zone(point: Point, width: int, height: int) -> Optional[str]:
    zone_w = width * CORNER_ZONE_RATIO
    zone_h = height * CORNER_ZONE_RATIO
    horizontal = "l" if point.x < zone_w else ("r" if point.x > width - zone_w else None)
    vertical = "t" if point.y < zone_h else ("b" if point.y > height - zone_h else None)
    if horizontal is None or vertical is None:
        return None
    return vertical + horizontal


def _add_unique(points: List[Point], center: Point) -> None:
    if all(distance(center, p) > SAME_MARKER_PX for p in points):
        points.append(center)


def _image_corner(name: str, width: int, height: int) -> Point:
    x = 0.0 if name.endswith("l") else float(width - 1)
    y = 0.0 if name.startswith("t") else float(height - 1)
    return Point(x, y)


def detect_markers(
    gray: np.ndarray,
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
) -> MarkerSet:
    """
    Find printed reference marks: square-ish dark blobs near the image
    corners (corner markers) and elongated ones along the edges. Works on
    the raw capture, so the sheet may sit on a darker background.
    """
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()
    height, width = gray.shape[:2]
    min_area, max_area = params.marker_area_range

    binary = backend.threshold_dark(
        backend.gaussian_blur(gray, 5, 0), MARKER_BLOCK_SIZE, MARKER_THRESHOLD_OFFSET
    )
    # Nested retrieval: on a photo the desk edge encloses the whole sheet.
    contours = backend.find_contours(binary, nested=True)

    candidates: Dict[str, List[Point]] = {name: [] for name in CORNER_NAMES}
    edges: List[Point] = []
    for contour in contours:
        area = backend.contour_area(contour)
        if area < min_area or area > max_area:
            continue
        x, y, w, h = backend.bounding_rect(contour)
        if w == 0 or h == 0:
            continue
        aspect = w / float(h)
        if aspect < EDGE_ASPECT[0] or aspect > EDGE_ASPECT[1]:
            continue
        hull_area = backend.hull_area(contour)
        if hull_area <= 0 or area / hull_area < MIN_MARKER_SOLIDITY:
            continue

        center = Point(x + w / 2.0, y + h / 2.0)
        if CORNER_ASPECT[0] <= aspect <= CORNER_ASPECT[1]:
            zone = _corner_zone(center, width, height)
            if zone is not None:
                _add_unique(candidates[zone], center)
        else:
            _add_unique(edges, center)

    corners: Dict[str, Point] = {}
    for name, points in candidates.items():
        if not points:
            continue
        anchor = _image_corner(name, width, height)
        corners[name] = min(points, key=lambda p: (distance(p, anchor), p.y, p.x))

    tolerance = scaled_tolerance(max(width, height))
    edge_rows = len(group_by_proximity((p.y for p in edges), tolerance))
    edges.sort(key=lambda p: (p.y, p.x))

    logger.info(
        "Reference markers: %d/4 corners, %d edge markers in %d rows",
        len(corners),
        len(edges),
        edge_rows,
    )
    return MarkerSet(corners=corners, edges=tuple(edges), edge_rows=edge_rows)


def find_sheet_quad(
    gray: np.ndarray,
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
) -> np.ndarray:
    """
    Largest 4-vertex contour of the edge map, ordered [tl, tr, bl, br].

    Raises AlignmentError when no quadrilateral large enough to be the sheet
    exists.
    """
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()
    height, width = gray.shape[:2]

    blurred = backend.gaussian_blur(gray, 5, 1)
    edged = backend.canny(blurred, 10, 70)
    # Close small gaps in the sheet outline.
    edged = backend.dilate(edged, 3, iterations=1)
    contours = backend.find_contours(edged)

    best: Optional[np.ndarray] = None
    best_area = 0.0
    for contour in contours:
        area = backend.contour_area(contour)
        if area < params.min_contour_area:
            continue
        approx = backend.approx_polygon(contour, 0.02)
        if len(approx) != 4:
            continue
        if area > best_area:
            best, best_area = approx, area

    min_sheet_area = params.min_sheet_fraction * float(width * height)
    if best is None or best_area < min_sheet_area:
        logger.info(
            "Sheet boundary not found (%d contours, best quad area %.0f < %.0f)",
            len(contours),
            best_area,
            min_sheet_area,
        )
        raise AlignmentError("NoSheetBoundaryFound")

    corners = order_corners(best)
    logger.info("Found 4-corner sheet boundary, area=%.0f corners=%s", best_area, corners.tolist())
    return corners


def rectify(
    gray: np.ndarray,
    corners: np.ndarray,
    size: Tuple[int, int],
    backend: Optional[VisionBackend] = None,
) -> np.ndarray:
    backend = backend or OpenCVBackend()
    return backend.warp_perspective(gray, corners, size)


def align_sheet(
    gray: np.ndarray,
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
) -> Alignment:
    """
    Locate the sheet in a normalized grayscale capture.

    Printed corner markers are preferred: their centroid box becomes the sheet
    bounds on the unwarped image. Without them the sheet outline is found and
    warped to the canonical size. Raises AlignmentError when both fail.
    """
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()

    markers = detect_markers(gray, params, backend)
    marker_bounds = markers.bounds()
    if marker_bounds is not None and marker_bounds.width > 0 and marker_bounds.height > 0:
        corners = np.array(
            [markers.corners[name].as_tuple() for name in CORNER_NAMES], dtype="float32"
        )
        logger.info("Using corner markers, sheet bounds %s", marker_bounds)
        return Alignment(
            mode="markers", image=gray, bounds=marker_bounds, corners=corners, markers=markers
        )

    corners = find_sheet_quad(gray, params, backend)
    out_w, out_h = params.canonical_size
    rectified = rectify(gray, corners, (out_w, out_h), backend)
    logger.info("Perspective warp applied (%dx%d)", out_w, out_h)
    return Alignment(
        mode="contour",
        image=rectified,
        bounds=Rect(0, 0, out_w, out_h),
        corners=corners,
        markers=markers,
    )
