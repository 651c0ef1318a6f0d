from __future__ import annotations


class OMRError(Exception):
    """Base class for sheet recognition errors."""


class AlignmentError(OMRError):
    """Sheet boundary or reference markers could not be located.

    Recovered inside the pipeline by falling back to the default grid.
    """

    def __init__(self, reason: str = "NoSheetBoundaryFound") -> None:
        super().__init__(reason)
        self.reason = reason


class RegionExtractionError(OMRError):
    """A single bubble region could not be read. Scored as empty."""


class ConfigurationError(OMRError, ValueError):
    """Question counts missing or invalid. Raised before any image work."""


class DecodeError(OMRError, ValueError):
    """Input could not be turned into pixel data."""
