"""Run the webhook server with uvicorn."""

import logging
import os

import uvicorn

from .config import HOST, LOG_LEVEL, PORT, setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    setup_logging()
    reload = os.environ.get("RELOAD", "false").lower() == "true"

    logger.info("Starting pr-bridge on http://%s:%s", HOST, PORT)
    uvicorn.run(
        "pr_bridge.webapp:create_app",
        factory=True,
        host=HOST,
        port=PORT,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
