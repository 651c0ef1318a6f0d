import logging
import os
from pathlib import Path

import uvicorn

ROOT_DIR = Path(__file__).parent.resolve()
DEFAULT_ENV_FILE = ".env.local"


def main() -> None:
    if (ROOT_DIR / DEFAULT_ENV_FILE).exists():
        os.environ.setdefault("SHEET_OMR_ENV_FILE", DEFAULT_ENV_FILE)

    # Settings read the env file on import.
    from sheet_omr.config import SETTINGS

    logging.basicConfig(
        level=SETTINGS.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    host = "0.0.0.0" if SETTINGS.mode == "docker" else "127.0.0.1"
    print("=== SHEET OMR SERVICE ===")
    print(f"Working dir: {ROOT_DIR}")
    print(f"Mode: {SETTINGS.mode}, listening on {host}:{SETTINGS.port}")

    uvicorn.run(
        "sheet_omr.main:app",
        host=host,
        port=SETTINGS.port,
        log_level=SETTINGS.log_level.lower(),
    )


if __name__ == "__main__":
    main()
