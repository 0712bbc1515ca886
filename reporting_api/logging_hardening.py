"""Logging Hardening and Redaction.

This module provides filters to prevent credentials (API keys, admin
secrets, signed-URL tokens) from appearing in application logs.
"""
import logging
import re
import sys

REDACTED = "[REDACTED]"

SECRET_PATTERNS = [
    # Raw API keys
    (re.compile(r'\brk_[A-Za-z0-9_-]{8,}'), 'rk_' + REDACTED),
    # Header echoes, e.g. "x-api-key: ..." or {'x-admin-secret': '...'}
    (re.compile(r'((?:x-api-key|x-admin-secret)[\'"]?\s*[:=]\s*[\'"]?)[^\s\'",}]+', re.IGNORECASE), r'\1' + REDACTED),
    # Signed-URL tokens in query strings
    (re.compile(r'([?&]token=)[^&\s\'"]+'), r'\1' + REDACTED),
    # Rotation responses
    (re.compile(r'("newApiKey":\s*")[^"]+(")'), r'\1' + REDACTED + r'\2'),
]


def redact(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not isinstance(record.msg, str):
            return True

        record.msg = redact(record.msg)

        # Also redact arguments if they are strings
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(redact(arg) if isinstance(arg, str) else arg for arg in record.args)

        return True


def setup_logging_redaction() -> None:
    """Apply the SecretRedactionFilter to the root logger, its handlers and all existing loggers."""
    redact_filter = SecretRedactionFilter()

    root_logger = logging.getLogger()

    # Remove existing filters if any (to avoid duplicates)
    for f in root_logger.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            root_logger.removeFilter(f)
    root_logger.addFilter(redact_filter)

    # Logger filters do not run for records propagated from children; handler filters do
    for handler in root_logger.handlers:
        for f in handler.filters[:]:
            if isinstance(f, SecretRedactionFilter):
                handler.removeFilter(f)
        handler.addFilter(redact_filter)

    for name in logging.root.manager.loggerDict:
        logger = logging.getLogger(name)
        if not any(isinstance(f, SecretRedactionFilter) for f in logger.filters):
            logger.addFilter(redact_filter)

    logging.info("Logging redaction filters active.")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once and install redaction."""
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger().setLevel(level.upper())
    setup_logging_redaction()
