from __future__ import annotations

from typing import Dict, List, Tuple
import logging
import math

from .geometry import BubbleRegion, Rect
from .types import OPTIONS, SUB_OPTIONS, SheetConfig


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# FORM LAYOUT CONFIGURATION
# Vietnamese answer sheet: SBD (student id) block top-right, then PHẦN I
# (A-D), PHẦN II (Đúng/Sai x a-d) and PHẦN III (numeric) stacked vertically.
# All values are fractions of the sheet bounding box (rectified sheet, marker
# box, or the whole raw image when alignment failed).
# ═══════════════════════════════════════════════════════════════════════════════

FORM_LAYOUT = {
    "studentId": {"x": (0.60, 0.95), "y": (0.04, 0.30), "rows": 10},
    "section1": {"x": (0.05, 0.95), "y": (0.33, 0.58), "columns": 4, "minRows": 10, "labelRatio": 0.2},
    "section2": {"x": (0.05, 0.95), "y": (0.61, 0.75), "wideSlots": 8, "narrowSlots": 4, "labelRatio": 0.2},
    "section3": {"x": (0.05, 0.95), "y": (0.78, 0.97), "labelRatio": 0.2},
    # Bubble side as a fraction of the smaller cell pitch.
    "bubbleRatio": 0.6,
}

# Row order of a PHẦN III column: sign, decimal separator, digits.
SECTION3_SYMBOLS: Tuple[str, ...] = ("-", ",") + tuple(str(d) for d in range(10))


def _band(bounds: Rect, section: str) -> Rect:
    layout = FORM_LAYOUT[section]
    x0, x1 = layout["x"]
    y0, y1 = layout["y"]
    return bounds.sub_rect(x0, x1, y0, y1)


def _bubble(cell_x: float, cell_y: float, pitch_x: float, pitch_y: float, **fields) -> BubbleRegion:
    side = max(1, int(FORM_LAYOUT["bubbleRatio"] * min(pitch_x, pitch_y)))
    cx = cell_x + pitch_x / 2.0
    cy = cell_y + pitch_y / 2.0
    return BubbleRegion(
        x=int(math.floor(cx - side / 2.0)),
        y=int(math.floor(cy - side / 2.0)),
        width=side,
        height=side,
        **fields,
    )


def _student_id_bubbles(bounds: Rect, digits: int) -> List[BubbleRegion]:
    band = _band(bounds, "studentId")
    rows = FORM_LAYOUT["studentId"]["rows"]
    pitch_x = band.width / digits
    pitch_y = band.height / rows
    bubbles: List[BubbleRegion] = []
    for col in range(digits):
        for row in range(rows):
            bubbles.append(
                _bubble(
                    band.x + col * pitch_x,
                    band.y + row * pitch_y,
                    pitch_x,
                    pitch_y,
                    section="studentId",
                    column=col,
                    row=row,
                    digit=row,
                )
            )
    return bubbles


def _section1_bubbles(bounds: Rect, count: int) -> List[BubbleRegion]:
    layout = FORM_LAYOUT["section1"]
    band = _band(bounds, "section1")
    columns = layout["columns"]
    rows = max(layout["minRows"], math.ceil(count / columns))
    col_width = band.width / columns
    label_width = col_width * layout["labelRatio"]
    pitch_x = (col_width - label_width) / len(OPTIONS)
    pitch_y = band.height / rows

    bubbles: List[BubbleRegion] = []
    for index in range(count):
        q_col, q_row = divmod(index, rows)
        origin_x = band.x + q_col * col_width + label_width
        cell_y = band.y + q_row * pitch_y
        for opt_idx, option in enumerate(OPTIONS):
            bubbles.append(
                _bubble(
                    origin_x + opt_idx * pitch_x,
                    cell_y,
                    pitch_x,
                    pitch_y,
                    section="section1",
                    question=index + 1,
                    option=option,
                    column=q_col,
                    row=q_row,
                )
            )
    return bubbles


def _section2_bubbles(bounds: Rect, count: int) -> List[BubbleRegion]:
    layout = FORM_LAYOUT["section2"]
    band = _band(bounds, "section2")
    slots = layout["wideSlots"] if count > layout["narrowSlots"] else layout["narrowSlots"]
    slot_rows = math.ceil(count / slots)
    slot_width = band.width / slots
    slot_height = band.height / slot_rows
    label_width = slot_width * layout["labelRatio"]
    # Two states per sub-option: Đúng (True) then Sai (False).
    pitch_x = (slot_width - label_width) / 2
    pitch_y = slot_height / len(SUB_OPTIONS)

    bubbles: List[BubbleRegion] = []
    for index in range(count):
        slot_row, slot_col = divmod(index, slots)
        origin_x = band.x + slot_col * slot_width + label_width
        origin_y = band.y + slot_row * slot_height
        for sub_idx, sub_option in enumerate(SUB_OPTIONS):
            for state_idx, value in enumerate((True, False)):
                bubbles.append(
                    _bubble(
                        origin_x + state_idx * pitch_x,
                        origin_y + sub_idx * pitch_y,
                        pitch_x,
                        pitch_y,
                        section="section2",
                        question=index + 1,
                        sub_option=sub_option,
                        value=value,
                        column=slot_col,
                        row=slot_row,
                    )
                )
    return bubbles


def _section3_bubbles(bounds: Rect, count: int, char_columns: int) -> List[BubbleRegion]:
    layout = FORM_LAYOUT["section3"]
    band = _band(bounds, "section3")
    question_width = band.width / count
    label_width = question_width * layout["labelRatio"]
    pitch_x = (question_width - label_width) / char_columns
    pitch_y = band.height / len(SECTION3_SYMBOLS)

    bubbles: List[BubbleRegion] = []
    for index in range(count):
        origin_x = band.x + index * question_width + label_width
        for char_col in range(char_columns):
            for row, symbol in enumerate(SECTION3_SYMBOLS):
                bubbles.append(
                    _bubble(
                        origin_x + char_col * pitch_x,
                        band.y + row * pitch_y,
                        pitch_x,
                        pitch_y,
                        section="section3",
                        question=index + 1,
                        column=char_col,
                        row=row,
                        symbol=symbol,
                        digit=int(symbol) if symbol.isdigit() else None,
                    )
                )
    return bubbles


def build_grid(bounds: Rect, config: SheetConfig) -> Tuple[BubbleRegion, ...]:
    """
    Every bubble position of the template inside `bounds`.

    Pure and deterministic: the same (bounds, config) always yields the same
    regions.
    """
    if bounds.width <= 0 or bounds.height <= 0:
        raise ValueError(f"empty sheet bounds: {bounds}")

    bubbles: List[BubbleRegion] = []
    bubbles.extend(_student_id_bubbles(bounds, config.student_id_digits))
    bubbles.extend(_section1_bubbles(bounds, config.section1_count))
    bubbles.extend(_section2_bubbles(bounds, config.section2_count))
    bubbles.extend(_section3_bubbles(bounds, config.section3_count, config.section3_columns))

    logger.debug("Generated %d bubble regions inside %s", len(bubbles), bounds)
    return tuple(bubbles)


def default_bounds(width: int, height: int) -> Rect:
    """
    Sheet box used when alignment failed: the whole image, which is the
    canonical grid when the capture is already a rectified sheet.
    """
    return Rect(0, 0, width, height)


def count_by_section(bubbles: Tuple[BubbleRegion, ...]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for bubble in bubbles:
        counts[bubble.section] = counts.get(bubble.section, 0) + 1
    return counts
