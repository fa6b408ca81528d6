"""Logging Hardening and Redaction.

Filters that keep encryption material (IVs, tags, salts, checksums,
ciphertext) and secret values out of application logs.
"""
import logging
import re

_FIELDS = r"iv|tag|salt|checksum|ciphertext|encrypted"

SECRET_PATTERNS = [
    # JSON style: "iv": "abcd..."
    (re.compile(rf'("(?:{_FIELDS})":\s*")[0-9a-fA-F]+(")'), r'\1[REDACTED]\2'),
    # keyword style: iv=abcd... / salt: abcd...
    (re.compile(rf'\b({_FIELDS})(\s*[=:]\s*)[0-9a-fA-F]{{8,}}'), r'\1\2[REDACTED]'),
    # secret values, any content
    (re.compile(r'("value":\s*")(?:[^"\\]|\\.)*(")'), r'\1[REDACTED]\2'),
    (re.compile(r"\b(value=)\S+"), r'\1[REDACTED]'),
]


def redact(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    redact(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True


def setup_logging_redaction() -> None:
    """Apply the SecretRedactionFilter to the root logger and all known loggers."""
    redact_filter = SecretRedactionFilter()

    root_logger = logging.getLogger()
    for f in root_logger.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            root_logger.removeFilter(f)
    root_logger.addFilter(redact_filter)

    # Records logged on child loggers skip the root logger's filters
    for name in list(logging.root.manager.loggerDict):
        child = logging.getLogger(name)
        for f in child.filters[:]:
            if isinstance(f, SecretRedactionFilter):
                child.removeFilter(f)
        child.addFilter(redact_filter)

    logging.getLogger(__name__).info("Logging redaction filters active.")
