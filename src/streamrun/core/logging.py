"""
streamrun logging — readable run traces in a terminal, JSON lines in production.

Every log call inside a run passes its context as extras:

    logger.info("Tool: double(x)", extra={"run_id": ..., "step": 0, "tool_name": "double"})

ColorFormatter renders that context as a short prefix so interleaved runs stay
readable ("a1b2c3d4#0 double"), StructuredFormatter emits it as top-level JSON
fields for querying.

Env vars (read by setup_logging when no argument is given):
    STREAMRUN_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
    STREAMRUN_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
    STREAMRUN_LOG_FORMAT — text / json (default: text)

The library never configures logging on import. create_app() in
streamrun.http calls setup_logging(); embedding applications call it once
at startup or bring their own handlers.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Extras forwarded from logger.info(..., extra={...})
RUN_FIELDS = (
    "run_id",
    "step",
    "tool_name",
    "call_id",
    "duration_ms",
    "status",
    "finish_reason",
)

_RESET = "\033[0m"
_DIM = "\033[2m"
_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}

# Libraries that log every HTTP round trip at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "openai._base_client", "uvicorn.access")


def run_context(record: logging.LogRecord) -> str:
    """
    Short run/step/tool label for a record, or "" outside a run.

    run_id is cut to 8 characters: "a1b2c3d4#2 double (15ms)".
    """
    run_id = getattr(record, "run_id", None)
    if not run_id:
        return ""
    label = str(run_id)[:8]
    step = getattr(record, "step", None)
    if step is not None:
        label += f"#{step}"
    tool_name = getattr(record, "tool_name", None)
    if tool_name:
        label += f" {tool_name}"
    duration_ms = getattr(record, "duration_ms", None)
    if duration_ms is not None:
        label += f" ({duration_ms}ms)"
    return label


class ColorFormatter(logging.Formatter):
    """Terminal formatter: time, logger, level, run context, message."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        name = record.name
        context = run_context(record)
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(level, '')}{level}{_RESET}"
            name = f"{_DIM}{name}{_RESET}"
            if context:
                context = f"{_DIM}{context}{_RESET}"

        line = f"{self.formatTime(record, self.datefmt)} [{name}] {level}: "
        if context:
            line += f"[{context}] "
        line += record.getMessage()
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line. Run extras become top-level keys, so
    `jq 'select(.run_id == "...")'` pulls a single run out of the log.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in RUN_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _use_color() -> bool:
    setting = os.getenv("STREAMRUN_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Install a single stdout handler on the root logger.

    level and fmt override STREAMRUN_LOG_LEVEL and STREAMRUN_LOG_FORMAT.
    Calling it again replaces the previous handler.
    """
    level_name = (level or os.getenv("STREAMRUN_LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = (fmt or os.getenv("STREAMRUN_LOG_FORMAT", "text")).lower()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("streamrun").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
