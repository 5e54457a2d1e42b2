import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

LOGGER_NAME = "storymine"


def _to_json(value: Any) -> Any:
    # enums and paths show up in extraction fields (kinds, provenance, source files)
    if isinstance(value, Enum):
        return value.value
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra_data`` fields are merged in.

    Records emitted from extraction workers also carry the worker thread name
    so interleaved per-file lines can be told apart.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name,
        }
        if record.threadName and record.threadName != "MainThread":
            payload["worker"] = record.threadName
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extra = getattr(record, "extra_data", None)
        if extra:
            for key, value in extra.items():
                payload.setdefault(key, value)
        return json.dumps(payload, ensure_ascii=False, default=_to_json)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not logger.handlers:
        # stdout carries CLI output and reports
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    return logger


LOGGER = configure_logging()
