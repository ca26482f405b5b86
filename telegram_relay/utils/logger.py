import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    Renders each record as a single JSON line for CloudWatch.

    Keys passed through ``extra=`` become top-level fields next to the
    level, logger name and message, so relay events can be queried by
    chat_id or status_code.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def get_logger(name: str = "relay") -> logging.Logger:
    """Named logger writing JSON lines to stderr; handlers are attached on first use only."""
    logger = logging.getLogger(name)

    if getattr(logger, "_configured", False):
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    # Lambda installs its own root handler; propagating would print each line twice.
    logger.propagate = False

    logger._configured = True  # type: ignore[attr-defined]

    return logger
