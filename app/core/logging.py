import json
import logging
import sys
from typing import Any

from .config import settings


# Context passed through ``extra=`` that ends up as top-level JSON fields
CONTEXT_FIELDS = ("channel_id", "user_id", "notification_id", "owner")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; realtime context fields are lifted out of ``extra``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log[field] = value
        if record.exc_info:
            log["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def configure_logging(level: str | int | None = None) -> None:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)
    root.handlers = [handler]

    # The request middleware already logs every call
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
