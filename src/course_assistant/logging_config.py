"""Application logging configuration utilities."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

INGEST_AUDIT_LOGGER = "course_assistant.ingest.audit"
CHAT_AUDIT_LOGGER = "course_assistant.chat.audit"


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string."""

    _RESERVED_KEYS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )

        payload: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
        }

        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                payload["message"] = message

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in self._RESERVED_KEYS or key.startswith("_"):
                continue
            payload[key] = value

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(log_dir: Optional[str] = None, level: str = "INFO") -> None:
    """Configure JSON logging on stderr plus the two audit trail files."""

    directory = Path(log_dir or "logs")
    directory.mkdir(parents=True, exist_ok=True)

    def _audit_handler(filename: str) -> dict[str, Any]:
        return {
            "class": "logging.FileHandler",
            "filename": str(directory / filename),
            "mode": "a",
            "encoding": "utf-8",
            "formatter": "json",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "ingest_audit": _audit_handler("ingest_audit.log"),
                "chat_audit": _audit_handler("chat_audit.log"),
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
            "loggers": {
                INGEST_AUDIT_LOGGER: {
                    "level": "INFO",
                    "handlers": ["ingest_audit"],
                    "propagate": False,
                },
                CHAT_AUDIT_LOGGER: {
                    "level": "INFO",
                    "handlers": ["chat_audit"],
                    "propagate": False,
                },
            },
        }
    )
