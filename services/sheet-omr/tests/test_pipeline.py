import cv2
import numpy as np
import pytest

from sheet_omr import (
    ConfigurationError,
    DecodeError,
    RecognitionParams,
    SheetConfig,
    TrueFalseAnswer,
    decode_image,
    image_from_pixels,
    process_sheet,
    recognize,
)
from sheet_omr.geometry import Rect
from sheet_omr.grid import build_grid, default_bounds
from sheet_omr.pipeline import process_batch
from sheet_omr.types import UNKNOWN_STUDENT_ID


def _section1(grid, option):
    return [b for b in grid if b.section == "section1" and b.option == option]


def test_rectified_sheet_reads_marked_options(blank_sheet, darken, five_questions):
    image = blank_sheet()
    darken(image, _section1(build_grid(Rect(0, 0, 700, 700), five_questions), "C"))

    report = process_sheet(image, five_questions)

    assert report.result.section1 == ("C",) * 5
    assert all(value > 0.4 for value in report.question_confidences["section1"])
    assert "no_marks_detected" not in report.warnings


def test_skipped_alignment_uses_whole_image(blank_sheet, darken, five_questions):
    image = blank_sheet()
    darken(image, _section1(build_grid(Rect(0, 0, 700, 700), five_questions), "C"))

    report = process_sheet(image, five_questions, skip_alignment=True)

    assert report.result.section1 == ("C",) * 5
    assert report.alignment["mode"] == "skipped"
    assert report.alignment["bounds"] == [0, 0, 700, 700]
    assert "warp_skipped_by_user" in report.warnings


def test_full_sheet_with_every_section(blank_sheet, darken):
    config = SheetConfig(section1_count=4, section2_count=2, section3_count=2)
    grid = build_grid(Rect(0, 0, 700, 700), config)
    wanted = [
        b
        for b in grid
        if (b.section == "studentId" and b.digit == (b.column + 1) % 10)
        or (b.section == "section1" and b.option == "ABCD"[b.question - 1])
        or (b.section == "section2" and b.question == 1 and b.value is (b.sub_option in "ac"))
        or (b.section == "section3" and b.question == 2 and b.symbol == "5")
    ]
    image = blank_sheet()
    darken(image, wanted)

    result = recognize(image, config, skip_alignment=True)

    assert result.student_id == "123456"
    assert result.section1 == ("A", "B", "C", "D")
    assert result.section2 == (TrueFalseAnswer(a=True, c=True), TrueFalseAnswer())
    assert result.section3 == ("", "5")


def test_blank_sheet_reads_nothing(blank_sheet, five_questions):
    report = process_sheet(blank_sheet(), five_questions, skip_alignment=True)
    result = report.result

    assert result.section1 == ("",) * 5
    assert result.section2 == (TrueFalseAnswer(),) * 8
    assert result.section3 == ("",) * 6
    assert result.student_id == UNKNOWN_STUDENT_ID
    assert result.confidence < 0.3
    for warning in ("no_marks_detected", "student_id_unknown", "needs_review"):
        assert warning in report.warnings


def test_marker_sheet_end_to_end(marker_sheet, darken, five_questions):
    image = marker_sheet()
    darken(image, _section1(build_grid(Rect(40, 40, 720, 920), five_questions), "B"))

    report = process_sheet(image, five_questions)

    assert report.alignment["mode"] == "markers"
    assert report.result.section1 == ("B",) * 5
    assert report.dimensions == {"originalWidth": 800, "originalHeight": 1000, "width": 800, "height": 1000}


def test_marker_sheet_on_dark_desk(marker_sheet, darken, on_desk, five_questions):
    sheet = marker_sheet()
    darken(sheet, _section1(build_grid(Rect(40, 40, 720, 920), five_questions), "A"))
    photo = on_desk(sheet, left=150, top=100)

    report = process_sheet(photo, five_questions)

    assert report.alignment["mode"] == "markers"
    assert report.alignment["bounds"] == pytest.approx([190, 140, 720, 920], abs=1.5)
    assert report.result.section1 == ("A",) * 5


def test_photographed_sheet_is_read_after_warp(blank_sheet, darken, five_questions):
    sheet = blank_sheet()
    darken(sheet, _section1(build_grid(Rect(0, 0, 700, 700), five_questions), "C"), pad=4)
    flat = np.float32([[0, 0], [699, 0], [0, 699], [699, 699]])
    tilted = np.float32([[120, 100], [690, 130], [90, 790], [660, 820]])
    photo = cv2.warpPerspective(
        sheet,
        cv2.getPerspectiveTransform(flat, tilted),
        (800, 900),
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=40,
    )

    report = process_sheet(photo, five_questions)

    assert report.alignment["mode"] == "contour"
    assert "corner_markers_incomplete" in report.warnings
    assert report.dimensions["width"] == 700 and report.dimensions["height"] == 700
    assert report.result.section1 == ("C",) * 5


def test_unlocatable_sheet_degrades_to_default_grid(blank_sheet, darken, five_questions):
    image = blank_sheet(1000, 800)
    darken(image, _section1(build_grid(default_bounds(1000, 800), five_questions), "C"))

    report = process_sheet(image, five_questions)
    undamped = process_sheet(
        image, five_questions, params=RecognitionParams(degraded_confidence_factor=1.0)
    )

    assert report.alignment["mode"] == "fallback"
    assert "markers_not_found" in report.warnings
    assert "alignment_unreliable" in report.warnings
    assert report.result.section1 == ("C",) * 5
    assert report.result.confidence == pytest.approx(undamped.result.confidence * 0.5)


def test_blank_capture_still_returns_full_result(blank_sheet, five_questions):
    report = process_sheet(blank_sheet(640, 480), five_questions)
    assert report.alignment["mode"] == "fallback"
    assert len(report.result.section1) == 5
    assert len(report.result.section2) == 8
    assert len(report.result.section3) == 6


def test_backend_crash_during_alignment_is_recovered(blank_sheet, five_questions, broken_contours_backend):
    report = process_sheet(blank_sheet(), five_questions, backend=broken_contours_backend)
    assert report.alignment["mode"] == "fallback"
    assert "alignment_error" in report.warnings
    assert len(report.result.section1) == 5


def test_unreadable_bubbles_score_empty(blank_sheet, five_questions, broken_region_backend):
    image = blank_sheet(value=0)
    report = process_sheet(image, five_questions, skip_alignment=True, backend=broken_region_backend)
    assert report.result.section1 == ("",) * 5
    assert report.result.confidence == 0.0


def test_same_input_same_output(marker_sheet, darken, five_questions):
    image = marker_sheet()
    darken(image, _section1(build_grid(Rect(40, 40, 720, 920), five_questions), "D")[:3])
    first = process_sheet(image, five_questions)
    second = process_sheet(image.copy(), five_questions)
    assert first.result == second.result
    assert first.to_dict() == second.to_dict()


def test_color_input_is_accepted(blank_sheet, darken, five_questions):
    gray = blank_sheet()
    darken(gray, _section1(build_grid(Rect(0, 0, 700, 700), five_questions), "A"))
    bgr = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
    bgra = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGRA)
    assert recognize(bgr, five_questions, skip_alignment=True).section1 == ("A",) * 5
    assert recognize(bgra, five_questions, skip_alignment=True).section1 == ("A",) * 5


def test_wide_capture_is_downscaled(blank_sheet, five_questions):
    report = process_sheet(blank_sheet(2400, 1200), five_questions, skip_alignment=True)
    assert report.dimensions["originalWidth"] == 2400
    assert report.dimensions["width"] == 2000
    assert report.dimensions["height"] == 1000


def test_artifacts_are_opt_in(blank_sheet, five_questions):
    plain = process_sheet(blank_sheet(), five_questions, skip_alignment=True)
    assert plain.rectified is None
    assert "bubbles" not in plain.to_dict()

    image = blank_sheet()
    debug = process_sheet(image, five_questions, skip_alignment=True, keep_artifacts=True)
    assert debug.rectified.shape == (700, 700)
    assert not np.shares_memory(debug.rectified, image)
    assert len(debug.scores) == sum(debug.bubble_counts.values())
    assert len(debug.to_dict()["bubbles"]) == len(debug.scores)


def test_mapping_config_is_accepted(blank_sheet):
    report = process_sheet(blank_sheet(), {"section1Count": 3, "section3Count": 2}, skip_alignment=True)
    assert len(report.result.section1) == 3
    assert len(report.result.section3) == 2
    assert report.bubble_counts["section1"] == 12


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"section2Count": 4},
        {"section1Count": 0},
        {"section1Count": -3},
        {"section1Count": "many"},
        {"section1Count": True},
        {"section1Count": 10, "section3Columns": 0},
    ],
)
def test_invalid_config_rejected_before_image_work(payload):
    with pytest.raises(ConfigurationError):
        process_sheet(None, payload)


@pytest.mark.parametrize(
    "image",
    [
        None,
        "sheet.png",
        np.zeros((0, 0), dtype=np.uint8),
        np.zeros((10, 10), dtype=np.float32),
        np.zeros((10, 10, 2), dtype=np.uint8),
    ],
)
def test_invalid_image_rejected(image, five_questions):
    with pytest.raises(DecodeError):
        process_sheet(image, five_questions)


def test_decode_image_round_trip(blank_sheet):
    ok, encoded = cv2.imencode(".png", blank_sheet(120, 80))
    assert ok
    image = decode_image(encoded.tobytes())
    assert image.shape == (80, 120, 3)


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_decode_image_rejects_garbage(payload):
    with pytest.raises(DecodeError):
        decode_image(payload)


def test_image_from_pixels_converts_rgba():
    # One red and one blue pixel, canvas RGBA order.
    image = image_from_pixels(bytes([255, 0, 0, 255, 0, 0, 255, 255]), width=2, height=1)
    assert image.shape == (1, 2, 4)
    assert image[0, 0].tolist() == [0, 0, 255, 255]
    assert image[0, 1].tolist() == [255, 0, 0, 255]

    with pytest.raises(DecodeError):
        image_from_pixels(b"\x00" * 7, width=2, height=1)
    with pytest.raises(DecodeError):
        image_from_pixels(b"", width=0, height=1)


def test_batch_runs_each_sheet(blank_sheet, darken, five_questions):
    marked = blank_sheet()
    darken(marked, _section1(build_grid(Rect(0, 0, 700, 700), five_questions), "B"))
    reports = process_batch(
        [("marked.png", marked), ("blank.png", blank_sheet())], five_questions, skip_alignment=True
    )
    assert [name for name, _ in reports] == ["marked.png", "blank.png"]
    assert reports[0][1].result.section1 == ("B",) * 5
    assert reports[1][1].result.section1 == ("",) * 5
