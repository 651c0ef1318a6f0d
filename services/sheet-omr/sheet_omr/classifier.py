from __future__ import annotations

from typing import Iterable, List, Optional, Tuple
import logging

import numpy as np

from .backend import OpenCVBackend, VisionBackend
from .errors import RegionExtractionError
from .geometry import BubbleRegion
from .types import RecognitionParams


logger = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 0.5

ScoredBubble = Tuple[BubbleRegion, float]


def _clamped_bounds(
    region: BubbleRegion, padding: int, width: int, height: int
) -> Tuple[int, int, int, int]:
    x0 = max(0, region.x - padding)
    y0 = max(0, region.y - padding)
    x1 = min(width, region.x + region.width + padding)
    y1 = min(height, region.y + region.height + padding)
    if x1 <= x0 or y1 <= y0:
        raise RegionExtractionError(
            f"region ({region.x},{region.y},{region.width}x{region.height}) outside {width}x{height} image"
        )
    return x0, y0, x1, y1


def _read_region(
    gray: np.ndarray, region: BubbleRegion, params: RecognitionParams, backend: VisionBackend
) -> float:
    height, width = gray.shape[:2]
    x0, y0, x1, y1 = _clamped_bounds(region, params.region_padding, width, height)
    roi = backend.extract_region(gray, x0, y0, x1, y1)
    if roi is None or roi.size == 0:
        raise RegionExtractionError("empty region")

    blurred = backend.gaussian_blur(roi, 3, 0)
    mean, std = backend.mean_stddev(blurred)

    # Dark marks on light paper: darker region => higher confidence.
    confidence = 1.0 - (mean / 255.0)

    # High variance: partial fill or a printed outline. Pull toward neutral.
    if std > params.variance_threshold:
        confidence += (NEUTRAL_CONFIDENCE - confidence) * params.ambiguity_damping

    return float(np.clip(confidence, 0.0, 1.0))


def fill_confidence(
    gray: np.ndarray,
    region: BubbleRegion,
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
) -> float:
    """
    Probability-like score in [0, 1] that `region` is marked.

    Never raises: a region that cannot be read scores 0.0 (empty) so one bad
    bubble does not abort the sheet.
    """
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()
    try:
        return _read_region(gray, region, params, backend)
    except RegionExtractionError as exc:
        logger.warning("Bubble %s/%s unreadable: %s", region.section, region.question, exc)
    except Exception as exc:
        logger.warning(
            "Bubble %s/%s extraction failed (%s): %s",
            region.section,
            region.question,
            type(exc).__name__,
            exc,
        )
    return 0.0


def score_regions(
    gray: np.ndarray,
    regions: Iterable[BubbleRegion],
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
) -> List[ScoredBubble]:
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()
    scored: List[ScoredBubble] = []
    for region in regions:
        confidence = fill_confidence(gray, region, params, backend)
        logger.debug(
            "Bubble at (%d,%d) %s q=%s fill=%.3f",
            region.x,
            region.y,
            region.section,
            region.question,
            confidence,
        )
        scored.append((region, confidence))
    return scored
