from .errors import AlignmentError, ConfigurationError, DecodeError, OMRError, RegionExtractionError
from .pipeline import ScanReport, decode_image, image_from_pixels, process_sheet, recognize
from .types import RecognitionParams, RecognitionResult, SheetConfig, TrueFalseAnswer

__all__ = [
    "AlignmentError",
    "ConfigurationError",
    "DecodeError",
    "OMRError",
    "RegionExtractionError",
    "ScanReport",
    "decode_image",
    "image_from_pixels",
    "process_sheet",
    "recognize",
    "RecognitionParams",
    "RecognitionResult",
    "SheetConfig",
    "TrueFalseAnswer",
]
