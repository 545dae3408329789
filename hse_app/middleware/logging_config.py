"""
Logging setup.

Development and testing get a one-line readable format; production gets
one JSON object per line. The level comes from ``LOG_LEVEL``.

Modules log through ``logging.getLogger(__name__)``. Lifecycle context is
passed with ``extra=`` and rendered by both formatters, e.g.::

    logger.info("Job %s finished", name, extra={"job_name": name, "duration_ms": 12})
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    "job_name",
    "duration_ms",
    "corrective_action_id",
    "sub_action_id",
    "actor",
    "endpoint",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine")


def _context(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS
            if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger <job>: message key=value ...``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context(record)
        job = ctx.pop("job_name", None)
        head = f"{datetime.fromtimestamp(record.created):%H:%M:%S} {record.levelname:<8}"
        if self.color:
            head = f"{self.COLORS.get(record.levelname, '')}{head}{self.RESET}"
        line = f"{head} {record.name}{f' <{job}>' if job else ''}: {record.getMessage()}"
        if ctx:
            line += " " + " ".join(f"{k}={v}" for k, v in ctx.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    ``create_app`` can run more than once per process (tests), so existing
    root handlers are replaced rather than added to.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production
                         else ReadableFormatter(color=sys.stderr.isatty()))
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    app.logger.info("Logging configured: level=%s format=%s",
                    level_name, "json" if production else "readable")
