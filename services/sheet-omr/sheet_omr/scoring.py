from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .types import RecognitionResult, SheetConfig, TrueFalseAnswer


def _section(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            value = payload[key]
            # Stored test configs keep answers under {"questionCount", "answers"}.
            if isinstance(value, Mapping):
                return value.get("answers") or []
            return value
    return []


@dataclass(frozen=True)
class AnswerKey:
    section1: Tuple[str, ...] = ()
    section2: Tuple[TrueFalseAnswer, ...] = ()
    section3: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "AnswerKey":
        if not payload:
            return cls()
        if not isinstance(payload, Mapping):
            raise ConfigurationError("answer key must be an object")
        section1 = _section(payload, "section1", "phanI")
        section2 = _section(payload, "section2", "phanII")
        section3 = _section(payload, "section3", "phanIII")
        try:
            return cls(
                section1=tuple(str(v).strip().upper() for v in section1),
                section2=tuple(
                    item if isinstance(item, TrueFalseAnswer) else TrueFalseAnswer.from_mapping(item)
                    for item in section2
                ),
                section3=tuple(str(v).strip() for v in section3),
            )
        except (TypeError, AttributeError) as exc:
            raise ConfigurationError(f"invalid answer key: {exc}") from exc


@dataclass(frozen=True)
class SheetScore:
    section1: int
    section2: int
    section3: int
    total: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section1": self.section1,
            "section2": self.section2,
            "section3": self.section3,
            "total": self.total,
            "percentage": self.percentage,
        }


def _matches(answers: Sequence[Any], expected: Sequence[Any], count: int) -> int:
    points = 0
    for i in range(count):
        if i < len(answers) and i < len(expected) and answers[i] == expected[i]:
            points += 1
    return points


def score_result(result: RecognitionResult, key: AnswerKey, config: SheetConfig) -> SheetScore:
    """
    One point per question whose answer equals the key entry, blank included.
    A PHẦN II question only counts when all four sub-answers match.
    """
    section1 = _matches(result.section1, key.section1, config.section1_count)
    section2 = _matches(result.section2, key.section2, config.section2_count)
    section3 = _matches(result.section3, key.section3, config.section3_count)

    total_questions = config.section1_count + config.section2_count + config.section3_count
    total = section1 + section2 + section3
    percentage = (total / total_questions) * 100 if total_questions > 0 else 0.0
    return SheetScore(
        section1=section1,
        section2=section2,
        section3=section3,
        total=total,
        percentage=round(percentage, 2),
    )
