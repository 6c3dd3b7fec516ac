"""Logging setup for the server and the CLI.

Two renderings of the same records:
- `json`: one object per line, run context (`run_id`, `step_id`, ...) as top-level keys
- `text`: a single human-readable line with the context appended as `key=value`

Step output is never logged here; it lives on the run record.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Literal

LogFormat = Literal["json", "text"]

# Everything a bare LogRecord carries, plus what Formatter.format() adds later.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_CORE_KEYS = ("ts", "level", "logger", "thread", "msg")


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through `extra=`, in the order they were given."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for key, value in context_fields(record).items():
            # Context never shadows the envelope.
            payload[f"ctx_{key}" if key in _CORE_KEYS else key] = value

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        # default=str keeps Paths and enums serialisable.
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        line = super().format(record)
        fields = context_fields(record)
        if not fields:
            return line
        context = " ".join(f"{key}={value}" for key, value in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{context}]{sep}{tail}"


def build_formatter(fmt: LogFormat) -> logging.Formatter:
    if fmt == "text":
        return TextFormatter()
    return JsonFormatter()


def configure_logging(level: str, fmt: LogFormat = "json") -> None:
    """Send every record to stderr in the chosen format, replacing existing handlers."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(build_formatter(fmt))
    root.addHandler(handler)
    root.setLevel(level.upper())

    # uvicorn's access log repeats every polling request.
    logging.getLogger("uvicorn.access").setLevel(max(root.level, logging.WARNING))
