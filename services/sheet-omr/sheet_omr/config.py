from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
import os

from dotenv import load_dotenv


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _parse_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _parse_float(name: str, default: float) -> float:
    raw = _env(name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc


def _parse_size(name: str, default: str) -> Tuple[int, int]:
    raw = _env(name, default).lower()
    try:
        width, height = (int(part) for part in raw.split("x", 1))
    except ValueError as exc:
        raise RuntimeError(f"{name} must look like WIDTHxHEIGHT.") from exc
    if width < 50 or height < 50:
        raise RuntimeError(f"{name} must be at least 50x50.")
    return width, height


def load_env() -> Optional[Path]:
    env_file = os.environ.get("SHEET_OMR_ENV_FILE")
    if not env_file:
        return None

    path = Path(env_file)
    if not path.is_absolute():
        repo_root = Path(__file__).resolve().parents[3]
        path = repo_root / env_file

    if not path.exists():
        raise RuntimeError(f"SHEET_OMR_ENV_FILE not found: {path}")

    load_dotenv(path)
    return path


@dataclass(frozen=True)
class Settings:
    mode: str
    port: int
    version: str
    log_level: str
    fill_threshold: float
    variance_threshold: float
    canonical_size: Tuple[int, int]


def load_settings() -> Settings:
    load_env()
    mode = _env("SHEET_OMR_MODE", "local")
    if mode not in ("local", "docker"):
        raise RuntimeError("SHEET_OMR_MODE must be 'local' or 'docker'.")

    fill_threshold = _parse_float("SHEET_OMR_FILL_THRESHOLD", 0.4)
    if not 0.0 < fill_threshold < 1.0:
        raise RuntimeError("SHEET_OMR_FILL_THRESHOLD must be between 0 and 1.")

    log_level = _env("SHEET_OMR_LOG_LEVEL", "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise RuntimeError("SHEET_OMR_LOG_LEVEL must be DEBUG, INFO, WARNING or ERROR.")

    return Settings(
        mode=mode,
        port=_parse_int("SHEET_OMR_PORT", 8010),
        version=_env("SHEET_OMR_VERSION", "0.1.0"),
        log_level=log_level,
        fill_threshold=fill_threshold,
        variance_threshold=_parse_float("SHEET_OMR_VARIANCE_THRESHOLD", 50.0),
        canonical_size=_parse_size("SHEET_OMR_CANONICAL_SIZE", "700x700"),
    )


SETTINGS = load_settings()
