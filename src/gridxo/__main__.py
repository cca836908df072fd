"""Entry point for running gridxo via ``python -m gridxo``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered lobby server."""

    level = os.environ.get("GRIDXO_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    host = os.environ.get("GRIDXO_HOST", "0.0.0.0")
    port = int(os.environ.get("GRIDXO_PORT", "8000"))
    uvicorn.run("gridxo.server:app", host=host, port=port, reload=False, log_level=level.lower())


if __name__ == "__main__":
    main()
