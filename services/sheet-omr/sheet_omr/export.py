from __future__ import annotations

from typing import Iterable, List, Optional, Tuple
import csv
import io

from .scoring import SheetScore
from .types import SUB_OPTIONS, RecognitionResult, SheetConfig


def csv_headers(config: SheetConfig) -> List[str]:
    headers = ["Mã học sinh", "Tổng điểm", "Phần trăm"]
    headers += [f"P1_Q{i}" for i in range(1, config.section1_count + 1)]
    for i in range(1, config.section2_count + 1):
        headers += [f"P2_Q{i}_{sub}" for sub in SUB_OPTIONS]
    headers += [f"P3_Q{i}" for i in range(1, config.section3_count + 1)]
    return headers


def csv_row(result: RecognitionResult, score: Optional[SheetScore], config: SheetConfig) -> List[str]:
    row = [
        result.student_id,
        str(score.total if score else 0),
        str(score.percentage if score else 0),
    ]
    for i in range(config.section1_count):
        row.append(result.section1[i] if i < len(result.section1) else "")
    for i in range(config.section2_count):
        if i < len(result.section2):
            answer = result.section2[i].to_dict()
            row += ["true" if answer[sub] else "false" for sub in SUB_OPTIONS]
        else:
            row += [""] * len(SUB_OPTIONS)
    for i in range(config.section3_count):
        row.append(result.section3[i] if i < len(result.section3) else "")
    return row


def results_to_csv(
    rows: Iterable[Tuple[RecognitionResult, Optional[SheetScore]]], config: SheetConfig
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(csv_headers(config))
    for result, score in rows:
        writer.writerow(csv_row(result, score, config))
    return buffer.getvalue()
