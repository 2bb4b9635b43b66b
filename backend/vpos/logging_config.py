"""Application logging setup.

Routes log through ``current_app.logger``; services and the audit sink use
module loggers under the ``vpos`` tree. Both get the same handler. With
LOG_JSON enabled each record is one JSON object, and an ``extra`` dict
passed as ``logger.info(..., extra={"extra": {...}})`` is merged into the
top level (receipt_number, store_id, verification_id, ...).
"""

import json
import logging
from datetime import datetime, timezone

from flask import Flask, has_request_context, request

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        if has_request_context():
            log_record["method"] = request.method
            log_record["path"] = request.path
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log_record.update(extra)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(app: Flask) -> None:
    """Attach one stream handler to the app logger and the vpos logger tree."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    if app.config.get("LOG_JSON"):
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler.setLevel(level)

    for logger in (app.logger, logging.getLogger("vpos")):
        # Re-running create_app (tests) must not stack handlers
        for existing in list(logger.handlers):
            if getattr(existing, "_vpos_handler", False):
                logger.removeHandler(existing)
        handler._vpos_handler = True
        logger.addHandler(handler)
        logger.setLevel(level)
