"""
Workspace logging.

Every record emitted while a request is being served is stamped with the
request id and, once the bearer token has been resolved, with the acting
user's tenant, user id, role and bound portal client. Service modules keep
logging with plain ``logger.info(...)`` calls and still get tenant-scoped
lines.

- LOG_FORMAT=json: one JSON object per line (log aggregators)
- LOG_FORMAT=readable: colored single-line output for a terminal
- LOG_LEVEL: root level; noisy library loggers stay at WARNING
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone

from flask import g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"

# Attributes copied from the resolved UserContext onto each record
ACTOR_FIELDS = ("tenant_id", "user_id", "role", "client_id")

# Attributes services may pass through ``extra=``
ENTITY_FIELDS = ("entity_type", "entity_id", "operation", "clone_batch_id")

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


class WorkspaceContextFilter(logging.Filter):
    """Stamp records with the current request id and acting user."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = None
        for name in ACTOR_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        if not has_request_context():
            return True

        record.request_id = getattr(g, "request_id", None)
        ctx = getattr(g, "user_context", None)
        if ctx is not None:
            for name in ACTOR_FIELDS:
                if getattr(record, name) is None:
                    setattr(record, name, getattr(ctx, name, None))
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id

        actor = {name: getattr(record, name, None) for name in ACTOR_FIELDS}
        if any(actor.values()):
            entry["actor"] = {k: v for k, v in actor.items() if v is not None}

        for name in ENTITY_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}:{record.funcName}:{record.lineno}"
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line terminal format: time, level, scope, logger, message."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    @staticmethod
    def scope(record: logging.LogRecord) -> str:
        tenant_id = getattr(record, "tenant_id", None)
        role = getattr(record, "role", None)
        if not tenant_id and not role:
            return ""
        return f" [{(tenant_id or '-')[:8]}/{role or '-'}]"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level}{self.scope(record)} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def build_formatter(fmt: str, stream=None) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    stream = stream or sys.stderr
    return ReadableFormatter(use_color=hasattr(stream, "isatty") and stream.isatty())


def _register_request_id(app):
    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]

    @app.after_request
    def _echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response


def configure_logging(app):
    """
    Install the workspace handler on the root logger.

    LOG_LEVEL and LOG_FORMAT come from the app config (see ``config.py``);
    production defaults to INFO/json, development and testing to DEBUG/readable.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()

    root = logging.getLogger()
    # Re-running the factory (tests) must not stack handlers
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(build_formatter(fmt, sys.stderr))
    handler.addFilter(WorkspaceContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    _register_request_id(app)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
