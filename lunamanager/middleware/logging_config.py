"""
Structured logging configuration.

- Development / testing: human-readable coloured lines
- Production: one JSON object per line
- Level: LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Attributes copied from ``extra=`` into JSON output
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "user_id",
    "workspace_id",
    "company_id",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line formatter for local work."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        rid = getattr(record, "request_id", None)
        rid_str = f" ({rid})" if rid else ""
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{dur_str}{rid_str}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Production (not DEBUG, not TESTING) -> JSONFormatter, default INFO
    Otherwise                           -> ReadableFormatter, default DEBUG
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session; avoid stacking handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info(
            "Logging configured: level=%s format=%s", level_name, "JSON" if is_prod else "readable"
        )
