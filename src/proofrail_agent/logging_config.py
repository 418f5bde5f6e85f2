"""Logging helpers.

Per-job events carry structured extras (``job_id``, ``reason``, ``txid``)
which the JSON formatter lifts into top-level keys.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

STRUCTURED_FIELDS = (
    "job_id",
    "phase",
    "reason",
    "txid",
    "attempt",
    "delay_ms",
    "transient",
    "height",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                base[key] = value
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=True, sort_keys=True)


class KeyValueFormatter(logging.Formatter):
    """Human-readable format with structured extras appended as ``key=value``."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={getattr(record, key)}"
            for key in STRUCTURED_FIELDS
            if getattr(record, key, None) is not None
        ]
        return f"{line} {' '.join(extras)}" if extras else line


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    """Install a single root handler; safe to call more than once."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_proofrail_handler", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if json_output else KeyValueFormatter())
    handler._proofrail_handler = True  # type: ignore[attr-defined]  # noqa: SLF001
    root.addHandler(handler)
    root.setLevel(level.upper())
    logging.getLogger("httpx").setLevel(logging.WARNING)
