"""Centralized logging with rotation for request and API audit trails."""
import logging
import os
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "request_id"}


class RequestContextFilter(logging.Filter):
    """Stamp records with the HTTP method and path when logged inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_id = f"{request.method} {request.path}"
        else:
            record.request_id = "-"
        return True


class ExtraFieldsFormatter(logging.Formatter):
    """Append ``extra=`` fields as sorted key=value pairs after the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}
        if not extras:
            return line
        pairs = " ".join(f"{key}={extras[key]!r}" for key in sorted(extras))
        return f"{line} | {pairs}"


def init_logging(app) -> logging.Logger:
    log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "circular_nest.log")

    level_name = (app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = ExtraFieldsFormatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    context_filter = RequestContextFilter()

    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    stream_handler = logging.StreamHandler()
    for handler in (file_handler, stream_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    # Service modules log under "app.<module>" and propagate into these handlers.
    logger = logging.getLogger(app.name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)

    logger.info("Logging initialized", extra={"path": log_path, "api_base_url": app.config.get("API_BASE_URL")})
    return logger
