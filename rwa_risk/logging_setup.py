"""Process-wide logging configuration with secret redaction."""

from __future__ import annotations

import logging
import re
import sys
from typing import Callable, Optional, TextIO

REDACTED = "***REDACTED***"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName", "_redacted"}
_SECRET_KEY = re.compile(r"(?i)(api_?key|token|secret|signature|password)")

_PATTERNS = (
    # Query string credentials such as Alpha Vantage's ``apikey=...``.
    re.compile(r"(?i)((?:api_?key|apikey|token|signature)=)[^&\s'\"]+"),
    # Telegram bot tokens embedded in request URLs.
    re.compile(r"(/bot)[^/\s'\"]+(/)"),
    # Mapping reprs: ``'token': '...'`` or ``"apiKey": "..."``.
    re.compile(
        r"(?i)(['\"](?:[\w-]*api[_-]?key|[\w-]*token|secret|signature|password)['\"]\s*:\s*['\"])[^'\"]*(['\"])"
    ),
)


def redact(text: str) -> str:
    """Mask API keys and bot tokens in ``text``."""

    redacted = _PATTERNS[0].sub(lambda m: m.group(1) + REDACTED, text)
    redacted = _PATTERNS[1].sub(lambda m: m.group(1) + REDACTED + m.group(2), redacted)
    redacted = _PATTERNS[2].sub(lambda m: m.group(1) + REDACTED + m.group(2), redacted)
    return redacted


class RedactingFilter(logging.Filter):
    """Render the record's message once and replace it with a redacted copy."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "_redacted", False):
            return True
        try:
            message = record.getMessage()
        except Exception:
            return True
        record.msg = redact(message)
        record.args = None
        record._redacted = True
        return True


_base_factory: Optional[Callable[..., logging.LogRecord]] = None


def _install_record_factory(redaction: RedactingFilter) -> None:
    """Redact at record creation so handlers attached later are covered too."""

    global _base_factory
    if _base_factory is not None:
        return
    _base_factory = logging.getLogRecordFactory()
    base = _base_factory

    def factory(*args, **kwargs) -> logging.LogRecord:
        record = base(*args, **kwargs)
        redaction.filter(record)
        return record

    logging.setLogRecordFactory(factory)


class ContextFormatter(logging.Formatter):
    """Append fields passed through ``extra=`` as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            (key, value) for key, value in vars(record).items() if key not in _RESERVED_ATTRS and not key.startswith("_")
        ]
        if not context:
            return message
        rendered = " ".join(
            f"{key}={REDACTED if _SECRET_KEY.search(key) else redact(str(value))}" for key, value in sorted(context)
        )
        return f"{message} | {rendered}"


def debug_to_level(debug: int) -> int:
    """Map a debug verbosity integer to a logging level."""

    if debug <= 0:
        return logging.WARNING
    if debug == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(debug: int = 1, stream_target: Optional[TextIO] = None) -> logging.Logger:
    """Configure the root logger for the monitor.

    ``debug`` maps 0/1/2 to WARNING/INFO/DEBUG. Existing root handlers are
    replaced so repeated calls (tests, CLI re-entry) do not duplicate output.
    """

    level = debug_to_level(debug)
    redaction = RedactingFilter()
    handler = logging.StreamHandler(stream_target or sys.stderr)
    handler.setFormatter(ContextFormatter(LOG_FORMAT))
    handler.addFilter(redaction)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    _install_record_factory(redaction)
    for name in ("ccxt", "urllib3", "botocore"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    return root


__all__ = ["REDACTED", "ContextFormatter", "RedactingFilter", "configure_logging", "debug_to_level", "redact"]
