import json  # JSON serialization
import logging
from datetime import datetime, timezone

SERVICE_NAME = "skinscan"

# passed via ``logger.info(..., extra={...})`` and copied into the record
CONTEXT_FIELDS = ("user_id", "detection_id", "image_key", "completion_id")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with request context when present."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                data[name] = value
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure root logger with JSON formatter.

    ``level`` may be a number or a name such as ``"debug"``; unknown names
    fall back to INFO.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler])
