"""
Process entry point: validates configuration, then serves the app with uvicorn.

Uvicorn handles SIGINT/SIGTERM by closing the listening socket and letting
in-flight requests finish before the lifespan shutdown runs.
"""

import logging
import sys

import uvicorn
from pydantic import ValidationError

logger = logging.getLogger("watihook.server")


def main() -> None:
    try:
        from watihook.config import get_settings
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.ERROR)
        missing = ", ".join(str(error["loc"][0]) for error in e.errors())
        logger.error(f"Missing or invalid configuration: {missing}")
        sys.exit(1)

    uvicorn.run(
        "watihook.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
        timeout_graceful_shutdown=30,
    )


if __name__ == "__main__":
    main()
