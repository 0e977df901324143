"""
Structured logging keyed by quote run.

Every record carries the ``run_id`` bound with ``run_context`` (``"none"``
outside a run). Provider keys and database credentials are scrubbed before a
record reaches a handler.

    with run_context(run_id):
        logger.info("[Orchestrator] probe wave dispatched")
"""

import logging
import os
import re
from contextvars import ContextVar
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

_run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

# user:password@ in database and engine URLs
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s:]+:[^/@\s]+@", re.IGNORECASE)
# ?key=... on Gemini REST URLs
_KEY_PARAM = re.compile(r"([?&]key=)[^&\s]+")


def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()


class run_context:
    """Bind a run ID to every log record emitted inside the block."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.token = None

    def __enter__(self):
        self.token = _run_id_ctx.set(self.run_id)
        return self.run_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            _run_id_ctx.reset(self.token)
        except ValueError:
            # Streaming generators can be closed from a different context.
            _run_id_ctx.set(None)


class RunIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "none"
        return True


def scrub(text: str) -> str:
    text = _URL_CREDENTIALS.sub(r"\g<scheme>***@", text)
    return _KEY_PARAM.sub(r"\1***", text)


class CredentialFilter(logging.Filter):
    """Masks advisory keys and URL credentials in messages and ``extra`` fields."""

    SECRET_FIELDS = {"openrouter_api_key", "gemini_api_key", "api_key", "authorization", "database_url"}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        for key in self.SECRET_FIELDS & set(record.__dict__):
            setattr(record, key, "***")
        return True


class QuoteJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["run_id"] = getattr(record, "run_id", "none")
        log_record["environment"] = os.getenv("ENVIRONMENT", "development")
        log_record["service"] = "quote-orchestrator"


def setup_logging() -> None:
    """
    Configure the root logger once per process.

    LOG_LEVEL sets the level; LOG_FORMAT is ``json`` or ``text`` and defaults
    to json when ENVIRONMENT=production.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    fmt = os.getenv("LOG_FORMAT", "json" if os.getenv("ENVIRONMENT") == "production" else "text")

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(QuoteJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | run=%(run_id)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    handler.addFilter(RunIDFilter())
    handler.addFilter(CredentialFilter())

    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
