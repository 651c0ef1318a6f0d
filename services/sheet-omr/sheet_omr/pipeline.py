from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
import logging

import cv2
import numpy as np

from .alignment import Alignment, align_sheet
from .backend import OpenCVBackend, VisionBackend
from .classifier import ScoredBubble, score_regions
from .errors import AlignmentError, DecodeError
from .extractor import QuestionConfidences, extract_answers
from .grid import build_grid, count_by_section, default_bounds
from .geometry import Rect
from .types import UNKNOWN_STUDENT_ID, RecognitionParams, RecognitionResult, SheetConfig


logger = logging.getLogger(__name__)

# Below this overall confidence a sheet should go to manual review.
LOW_CONFIDENCE_CUTOFF = 0.3


def decode_image(image_bytes: bytes) -> np.ndarray:
    if not image_bytes:
        raise DecodeError("empty_file")
    buffer = np.frombuffer(image_bytes, np.uint8)
    # IMREAD_COLOR also honours the EXIF orientation of phone photos.
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise DecodeError("invalid_image_data")
    return image


def image_from_pixels(data: bytes, width: int, height: int, channels: int = 4) -> np.ndarray:
    """Wrap raw interleaved pixel data (e.g. canvas RGBA) as an image array."""
    if width <= 0 or height <= 0 or channels not in (1, 3, 4):
        raise DecodeError("invalid_pixel_geometry")
    expected = width * height * channels
    if len(data) != expected:
        raise DecodeError(f"pixel_data_size_mismatch: expected {expected} bytes, got {len(data)}")
    pixels = np.frombuffer(data, np.uint8).reshape(height, width, channels)
    if channels == 1:
        return pixels[:, :, 0].copy()
    if channels == 3:
        return cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    return cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)


def _validate_image(image: Any) -> np.ndarray:
    if not isinstance(image, np.ndarray):
        raise DecodeError("image must be a numpy array")
    if image.size == 0 or image.ndim not in (2, 3):
        raise DecodeError("invalid_image_shape")
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        raise DecodeError("invalid_image_channels")
    if image.dtype != np.uint8:
        raise DecodeError("image must be 8-bit")
    return image


@dataclass
class ScanReport:
    """Recognition result plus the diagnostics of the pass that produced it."""

    result: RecognitionResult
    alignment: Dict[str, Any]
    question_confidences: QuestionConfidences
    warnings: List[str] = field(default_factory=list)
    dimensions: Dict[str, int] = field(default_factory=dict)
    bubble_counts: Dict[str, int] = field(default_factory=dict)
    # Only filled when artifacts were requested.
    rectified: Optional[np.ndarray] = None
    scores: Optional[List[ScoredBubble]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "answers": self.result.to_dict(),
            "alignment": self.alignment,
            "questionConfidences": {
                section: [round(value, 4) for value in values]
                for section, values in self.question_confidences.items()
            },
            "warnings": list(self.warnings),
            "dimensions": dict(self.dimensions),
            "bubbleCounts": dict(self.bubble_counts),
        }
        if self.scores is not None:
            payload["bubbles"] = [
                {
                    "section": bubble.section,
                    "question": bubble.question,
                    "option": bubble.option or bubble.sub_option or bubble.symbol,
                    "value": bubble.value,
                    "column": bubble.column,
                    "row": bubble.row,
                    "box": [bubble.x, bubble.y, bubble.width, bubble.height],
                    "fill": round(confidence, 4),
                }
                for bubble, confidence in self.scores
            ]
        return payload


def _prepare_gray(
    image: np.ndarray, params: RecognitionParams, backend: VisionBackend
) -> np.ndarray:
    gray = backend.to_gray(image)
    height, width = gray.shape[:2]
    # Speed: detection and scoring run on a copy no wider than the limit.
    if width > params.max_working_width:
        scale = params.max_working_width / float(width)
        target = (params.max_working_width, max(1, int(height * scale)))
        gray = backend.resize(gray, target)
        logger.info("Resized %dx%d capture to %dx%d", width, height, target[0], target[1])
    return backend.normalize(gray)


def _align(
    gray: np.ndarray,
    params: RecognitionParams,
    backend: VisionBackend,
    skip_alignment: bool,
    warnings: List[str],
) -> Alignment:
    height, width = gray.shape[:2]
    if skip_alignment:
        warnings.append("warp_skipped_by_user")
        logger.info("Alignment skipped by caller, image treated as rectified")
        return Alignment(mode="skipped", image=gray, bounds=Rect(0, 0, width, height))

    try:
        alignment = align_sheet(gray, params, backend)
    except AlignmentError as exc:
        warnings.append("markers_not_found")
        logger.warning("Alignment failed (%s), using default grid on the raw image", exc.reason)
    except Exception as exc:
        warnings.append("alignment_error")
        logger.warning("Alignment raised %s: %s, using default grid", type(exc).__name__, exc)
    else:
        if alignment.mode == "contour":
            warnings.append("corner_markers_incomplete")
        return alignment

    warnings.append("alignment_unreliable")
    return Alignment(mode="fallback", image=gray, bounds=default_bounds(width, height))


def process_sheet(
    image: np.ndarray,
    config: SheetConfig,
    *,
    params: Optional[RecognitionParams] = None,
    backend: Optional[VisionBackend] = None,
    skip_alignment: bool = False,
    keep_artifacts: bool = False,
) -> ScanReport:
    """
    Recognise one answer sheet.

    Only an invalid configuration or an unreadable image raise
    (ConfigurationError / DecodeError). Alignment and bubble read problems
    degrade to a best-effort result with lower confidence and a warning.
    """
    if not isinstance(config, SheetConfig):
        config = SheetConfig.from_mapping(config)
    image = _validate_image(image)
    params = params or RecognitionParams()
    backend = backend or OpenCVBackend()

    logger.info(
        "Options: skip_alignment=%s threshold=%.2f counts=%d/%d/%d",
        skip_alignment,
        params.fill_threshold,
        config.section1_count,
        config.section2_count,
        config.section3_count,
    )

    warnings: List[str] = []
    # Derived images are locals of this call; the report only carries copies.
    gray = _prepare_gray(image, params, backend)
    alignment = _align(gray, params, backend, skip_alignment, warnings)

    regions = build_grid(alignment.bounds, config)
    scores = score_regions(alignment.image, regions, params, backend)
    result, question_confidences = extract_answers(scores, config, params.fill_threshold)

    if alignment.degraded:
        result = replace(result, confidence=result.confidence * params.degraded_confidence_factor)

    if not any(result.section1) and not any(result.section3) and not any(
        any(answer.to_dict().values()) for answer in result.section2
    ):
        warnings.append("no_marks_detected")
    if result.student_id == UNKNOWN_STUDENT_ID:
        warnings.append("student_id_unknown")
    if result.confidence < LOW_CONFIDENCE_CUTOFF:
        warnings.append("needs_review")

    working_h, working_w = alignment.image.shape[:2]
    report = ScanReport(
        result=result,
        alignment=alignment.meta(),
        question_confidences=question_confidences,
        warnings=warnings,
        dimensions={
            "originalWidth": int(image.shape[1]),
            "originalHeight": int(image.shape[0]),
            "width": int(working_w),
            "height": int(working_h),
        },
        bubble_counts=count_by_section(regions),
    )
    if keep_artifacts:
        report.rectified = alignment.image.copy()
        report.scores = scores

    return report


def recognize(image: np.ndarray, config: SheetConfig, **kwargs: Any) -> RecognitionResult:
    return process_sheet(image, config, **kwargs).result


def process_batch(
    images: List[Tuple[str, np.ndarray]], config: SheetConfig, **kwargs: Any
) -> List[Tuple[str, ScanReport]]:
    """Sheets one after another; each run shares nothing with the others."""
    return [(name, process_sheet(image, config, **kwargs)) for name, image in images]
