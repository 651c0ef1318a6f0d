from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError


SUB_OPTIONS = ("a", "b", "c", "d")
OPTIONS = ("A", "B", "C", "D")

UNKNOWN_STUDENT_ID = "UNKNOWN"

# Camel-case keys as stored by the test configuration page.
_CONFIG_KEYS = {
    "section1_count": ("section1Count", "section1_count"),
    "section2_count": ("section2Count", "section2_count"),
    "section3_count": ("section3Count", "section3_count"),
    "student_id_digits": ("studentIdDigits", "student_id_digits"),
    "section3_columns": ("section3Columns", "section3_columns"),
}


def _as_count(name: str, value: Any, upper: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer.")
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer.") from exc
    if isinstance(value, float) and value != count:
        raise ConfigurationError(f"{name} must be an integer.")
    if count <= 0:
        raise ConfigurationError(f"{name} must be greater than zero.")
    if upper is not None and count > upper:
        raise ConfigurationError(f"{name} must be at most {upper}.")
    return count


@dataclass(frozen=True)
class SheetConfig:
    """Question counts of one printed template (PHẦN I/II/III)."""

    section1_count: int
    section2_count: int = 8
    section3_count: int = 6
    student_id_digits: int = 6
    section3_columns: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "section1_count", _as_count("section1Count", self.section1_count, 200))
        object.__setattr__(self, "section2_count", _as_count("section2Count", self.section2_count, 64))
        object.__setattr__(self, "section3_count", _as_count("section3Count", self.section3_count, 24))
        object.__setattr__(
            self, "student_id_digits", _as_count("studentIdDigits", self.student_id_digits, 12)
        )
        object.__setattr__(
            self, "section3_columns", _as_count("section3Columns", self.section3_columns, 6)
        )

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "SheetConfig":
        if not payload:
            raise ConfigurationError("section1Count is required.")
        values: Dict[str, Any] = {}
        for attr, keys in _CONFIG_KEYS.items():
            for key in keys:
                if key in payload and payload[key] is not None:
                    values[attr] = payload[key]
                    break
        if "section1_count" not in values:
            raise ConfigurationError("section1Count is required.")
        return cls(**values)


@dataclass(frozen=True)
class RecognitionParams:
    """Tunable constants of one recognition pass."""

    fill_threshold: float = 0.4
    variance_threshold: float = 50.0
    ambiguity_damping: float = 0.25
    region_padding: int = 2
    canonical_size: Tuple[int, int] = (700, 700)
    max_working_width: int = 2000
    marker_area_range: Tuple[float, float] = (50.0, 5000.0)
    min_contour_area: float = 50.0
    min_sheet_fraction: float = 0.20
    degraded_confidence_factor: float = 0.5

    @classmethod
    def from_settings(cls, settings: Any) -> "RecognitionParams":
        return cls(
            fill_threshold=float(settings.fill_threshold),
            variance_threshold=float(settings.variance_threshold),
            canonical_size=tuple(settings.canonical_size),
        )


@dataclass(frozen=True)
class TrueFalseAnswer:
    a: bool = False
    b: bool = False
    c: bool = False
    d: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"a": self.a, "b": self.b, "c": self.c, "d": self.d}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "TrueFalseAnswer":
        return cls(**{key: bool(payload.get(key, False)) for key in SUB_OPTIONS})


@dataclass(frozen=True)
class RecognitionResult:
    student_id: str
    section1: Tuple[str, ...]
    section2: Tuple[TrueFalseAnswer, ...]
    section3: Tuple[str, ...]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "studentId": self.student_id,
            "section1": list(self.section1),
            "section2": [answer.to_dict() for answer in self.section2],
            "section3": list(self.section3),
            "confidence": float(self.confidence),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RecognitionResult":
        return cls(
            student_id=str(payload.get("studentId") or UNKNOWN_STUDENT_ID),
            section1=tuple(str(v) for v in payload.get("section1") or []),
            section2=tuple(TrueFalseAnswer.from_mapping(v) for v in payload.get("section2") or []),
            section3=tuple(str(v) for v in payload.get("section3") or []),
            confidence=float(payload.get("confidence") or 0.0),
        )
