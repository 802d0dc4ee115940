"""
Run the Flowpilot API server.

Usage:
    python -m flowpilot
"""

from dotenv import load_dotenv

load_dotenv()

import uvicorn  # noqa: E402

from .config import API_HOST, API_PORT, LOG_DIR, LOG_LEVEL  # noqa: E402
from .infra.logging_config import setup_logging  # noqa: E402


def main() -> None:
    setup_logging(LOG_LEVEL, LOG_DIR)
    uvicorn.run("flowpilot.api.main:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
