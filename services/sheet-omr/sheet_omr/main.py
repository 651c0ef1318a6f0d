from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from .config import SETTINGS
from .errors import ConfigurationError
from .export import results_to_csv
from .pipeline import decode_image, process_sheet
from .scoring import AnswerKey, score_result
from .types import RecognitionParams, RecognitionResult, SheetConfig


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthResponse(BaseModel):
    status: str
    mode: str
    version: str
    timestamp: str


class ScanResponse(BaseModel):
    ok: bool
    result: dict


class ExportRequest(BaseModel):
    config: dict
    answerKey: dict | None = None
    results: list[dict] = Field(default_factory=list)


app = FastAPI(title="Sheet OMR Service")
BASE_PARAMS = RecognitionParams.from_settings(SETTINGS)


def _parse_flag(value: bool | str | None) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


def _parse_answer_key(value: str | None) -> AnswerKey | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="invalid_answer_key") from exc
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="invalid_answer_key")
    try:
        return AnswerKey.from_mapping(parsed)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail="invalid_answer_key") from exc


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        mode=SETTINGS.mode,
        version=SETTINGS.version,
        timestamp=_now_iso()
    )


@app.get("/version")
def version() -> dict:
    return {
        "name": "Sheet OMR Service",
        "version": SETTINGS.version,
        "mode": SETTINGS.mode,
        "timestamp": _now_iso()
    }


@app.post("/scan", response_model=ScanResponse)
async def scan(
    file: UploadFile = File(...),
    section1Count: int | None = Form(None),
    section2Count: int | None = Form(None),
    section3Count: int | None = Form(None),
    studentIdDigits: int | None = Form(None),
    section3Columns: int | None = Form(None),
    answerKey: str | None = Form(None),
    threshold: float | None = Form(None),
    skipWarp: bool | str | None = Form(None),
    debug: bool | str | None = Form(None),
) -> ScanResponse:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="empty_file")

    answer_key = _parse_answer_key(answerKey)
    params = BASE_PARAMS
    if threshold is not None:
        if not 0.0 < threshold < 1.0:
            raise HTTPException(status_code=400, detail="invalid_threshold")
        params = replace(params, fill_threshold=float(threshold))

    try:
        config = SheetConfig.from_mapping(
            {
                "section1Count": section1Count,
                "section2Count": section2Count,
                "section3Count": section3Count,
                "studentIdDigits": studentIdDigits,
                "section3Columns": section3Columns,
            }
        )
        image = decode_image(content)
        report = process_sheet(
            image,
            config,
            params=params,
            skip_alignment=_parse_flag(skipWarp),
            keep_artifacts=_parse_flag(debug),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result: dict[str, Any] = report.to_dict()
    if answer_key is not None:
        result["score"] = score_result(report.result, answer_key, config).to_dict()

    return ScanResponse(ok=True, result=result)


@app.post("/export", response_class=PlainTextResponse)
def export(request: ExportRequest) -> PlainTextResponse:
    try:
        config = SheetConfig.from_mapping(request.config)
        key = AnswerKey.from_mapping(request.answerKey) if request.answerKey else None
        results = [RecognitionResult.from_dict(item) for item in request.results]
    except (ValueError, TypeError, AttributeError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    rows = [(result, score_result(result, key, config) if key else None) for result in results]
    return PlainTextResponse(
        results_to_csv(rows, config),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="ket_qua_thi.csv"'},
    )
