from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from .classifier import ScoredBubble
from .types import (
    SUB_OPTIONS,
    UNKNOWN_STUDENT_ID,
    RecognitionResult,
    SheetConfig,
    TrueFalseAnswer,
)


logger = logging.getLogger(__name__)

UNRESOLVED_DIGIT = "?"

# Per-question best confidence (0.0 when unresolved), keyed by section.
QuestionConfidences = Dict[str, List[float]]


def _pick(candidates: Sequence[ScoredBubble], threshold: float) -> Optional[ScoredBubble]:
    """
    Highest-confidence candidate strictly above `threshold`.

    Equal confidences keep the earlier candidate (scan order).
    """
    best: Optional[ScoredBubble] = None
    for bubble, confidence in candidates:
        if confidence <= threshold:
            continue
        if best is None or confidence > best[1]:
            best = (bubble, confidence)
    return best


def _group(scores: Iterable[ScoredBubble], section: str, key) -> Dict:
    groups: Dict = defaultdict(list)
    for bubble, confidence in scores:
        if bubble.section == section:
            groups[key(bubble)].append((bubble, confidence))
    return groups


def _student_id(scores: Sequence[ScoredBubble], config: SheetConfig, threshold: float) -> Tuple[str, List[float]]:
    columns = _group(scores, "studentId", lambda b: b.column)
    digits: List[str] = []
    best: List[float] = []
    for col in range(config.student_id_digits):
        picked = _pick(columns.get(col, []), threshold)
        if picked is None:
            digits.append(UNRESOLVED_DIGIT)
            best.append(0.0)
        else:
            digits.append(str(picked[0].digit))
            best.append(picked[1])

    if all(d == UNRESOLVED_DIGIT for d in digits):
        return UNKNOWN_STUDENT_ID, best
    return "".join(digits), best


def _section1(scores: Sequence[ScoredBubble], config: SheetConfig, threshold: float) -> Tuple[List[str], List[float]]:
    questions = _group(scores, "section1", lambda b: b.question)
    answers: List[str] = []
    best: List[float] = []
    for number in range(1, config.section1_count + 1):
        picked = _pick(questions.get(number, []), threshold)
        if picked is None:
            answers.append("")
            best.append(0.0)
        else:
            answers.append(picked[0].option or "")
            best.append(picked[1])
    return answers, best


def _section2(
    scores: Sequence[ScoredBubble], config: SheetConfig, threshold: float
) -> Tuple[List[TrueFalseAnswer], List[float]]:
    pairs = _group(scores, "section2", lambda b: (b.question, b.sub_option))
    answers: List[TrueFalseAnswer] = []
    best: List[float] = []
    for number in range(1, config.section2_count + 1):
        values: Dict[str, bool] = {}
        for sub_option in SUB_OPTIONS:
            picked = _pick(pairs.get((number, sub_option), []), threshold)
            values[sub_option] = bool(picked[0].value) if picked else False
            best.append(picked[1] if picked else 0.0)
        answers.append(TrueFalseAnswer(**values))
    return answers, best


def _section3(scores: Sequence[ScoredBubble], config: SheetConfig, threshold: float) -> Tuple[List[str], List[float]]:
    columns = _group(scores, "section3", lambda b: (b.question, b.column))
    answers: List[str] = []
    best: List[float] = []
    for number in range(1, config.section3_count + 1):
        chars: List[str] = []
        for char_col in range(config.section3_columns):
            picked = _pick(columns.get((number, char_col), []), threshold)
            if picked is not None:
                chars.append(picked[0].symbol or "")
            best.append(picked[1] if picked else 0.0)
        answers.append("".join(chars))
    return answers, best


def overall_confidence(unit_confidences: Sequence[float]) -> float:
    """
    Mean of per-unit best confidences, unresolved units counting as zero.

    Grows with every additional confidently resolved unit; a blank sheet
    scores 0.
    """
    if not unit_confidences:
        return 0.0
    return float(sum(unit_confidences) / len(unit_confidences))


def extract_answers(
    scores: Sequence[ScoredBubble],
    config: SheetConfig,
    threshold: float = 0.4,
) -> Tuple[RecognitionResult, QuestionConfidences]:
    scores = list(scores)
    student_id, id_best = _student_id(scores, config, threshold)
    section1, s1_best = _section1(scores, config, threshold)
    section2, s2_best = _section2(scores, config, threshold)
    section3, s3_best = _section3(scores, config, threshold)

    confidence = overall_confidence(id_best + s1_best + s2_best + s3_best)

    logger.info(
        "Resolved: id=%s section1=%d/%d section2=%d/%d sub-answers section3=%d/%d confidence=%.3f",
        student_id,
        sum(1 for a in section1 if a),
        len(section1),
        sum(1 for c in s2_best if c > 0.0),
        len(s2_best),
        sum(1 for a in section3 if a),
        len(section3),
        confidence,
    )

    result = RecognitionResult(
        student_id=student_id,
        section1=tuple(section1),
        section2=tuple(section2),
        section3=tuple(section3),
        confidence=confidence,
    )
    details: QuestionConfidences = {
        "studentId": id_best,
        "section1": s1_best,
        "section2": [max(s2_best[i : i + 4]) for i in range(0, len(s2_best), 4)],
        "section3": [
            max(s3_best[i : i + config.section3_columns])
            for i in range(0, len(s3_best), config.section3_columns)
        ],
    }
    return result, details
