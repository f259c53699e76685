"""Environment configuration and logging setup."""

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from dotenv import load_dotenv

load_dotenv()

GITHUB_APP_ID = os.environ.get("GITHUB_APP_ID", "")
GITHUB_APP_PRIVATE_KEY = os.environ.get("GITHUB_APP_PRIVATE_KEY", "")
GITHUB_APP_SLUG = os.environ.get("GITHUB_APP_SLUG") or os.environ.get(
    "NEXT_PUBLIC_GITHUB_APP_SLUG", ""
)

GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")
GITHUB_USER_AGENT = os.environ.get("GITHUB_USER_AGENT", "pr-bridge/1.0")

LINEAR_API_URL = os.environ.get("LINEAR_API_URL", "https://api.linear.app/graphql")
LINEAR_API_KEY = os.environ.get("LINEAR_API_KEY", "")
LINEAR_ACCESS_TOKEN = os.environ.get("LINEAR_ACCESS_TOKEN", "")

ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
PR_DESCRIPTION_MODEL = os.environ.get("PR_DESCRIPTION_MODEL", "claude-sonnet-4-5")

STORE_BACKEND = os.environ.get("STORE_BACKEND", "memory")
LANGGRAPH_URL = os.environ.get("LANGGRAPH_URL") or os.environ.get(
    "LANGGRAPH_URL_PROD", "http://localhost:2024"
)

DEFAULT_BASE_BRANCH = os.environ.get("DEFAULT_BASE_BRANCH", "main")
PREVENT_DUPLICATE_PRS = os.environ.get("PREVENT_DUPLICATE_PRS", "true").lower() == "true"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.environ.get("LOG_JSON", "false").lower() == "true"

HOST = os.environ.get("HOST", "0.0.0.0")  # noqa: S104
PORT = int(os.environ.get("PORT", "8000"))


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("delivery_id", "event_type", "repository", "branch"):
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(*, json_format: bool = LOG_JSON, level: str | int = LOG_LEVEL) -> None:
    """Attach a stream handler to the package logger.

    Args:
        json_format: Emit JSON lines instead of the plain text format
        level: Log level name or number
    """
    root = logging.getLogger("pr_bridge")
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)
