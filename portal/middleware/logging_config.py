"""
Logging setup for the portal.

Production writes one JSON object per line; development and tests get a
short coloured line.  ``RequestContextFilter`` stamps the request id and
the acting user on every record emitted while a request is active, so
lifecycle and gateway log lines can be joined to the access log.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

CONTEXT_FIELDS = ("request_id", "user_id", "status", "duration_ms", "application_id")
NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                record.user_id = getattr(g, "jwt_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        rid = getattr(record, "request_id", None)
        tag = f" [{rid}]" if rid else ""
        line = f"{color}{stamp} {record.levelname:<7}{self.RESET} {record.name}{tag}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    LOG_LEVEL overrides the default (INFO in production, DEBUG otherwise).
    """
    production = not app.config.get("DEBUG") and not app.config.get("TESTING")
    level_name = (os.getenv("LOG_LEVEL") or ("INFO" if production else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs once per test session; never stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging: level=%s format=%s", level_name, "json" if production else "text")
