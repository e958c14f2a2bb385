"""
Sanitizing structured logger.

Components receive a logger instead of reaching for a module-level
singleton. The default one is a ``logging.LoggerAdapter`` that accepts a
``data=`` mapping, scrubs it and appends it to the message as JSON:

    log = get_logger(__name__)
    log.info("Fetched commits", data={"repo": "acme/api", "count": 3})

Secrets (tokens, passwords, cookies...) are replaced completely, personal
data (emails, phone numbers, IP addresses) is partially masked.
"""

import json
import logging
import re
from typing import Any, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_KEY_PATTERN = re.compile(
    r"token|password|passwd|secret|authorization|cookie|session|jwt|"
    r"api_?key|private_?key|client_?secret|credential|passphrase",
    re.IGNORECASE,
)
PII_KEY_PATTERN = re.compile(r"email|phone|address|^ip$|ip_?address", re.IGNORECASE)
EMAIL_KEY_PATTERN = re.compile(r"email", re.IGNORECASE)
IP_KEY_PATTERN = re.compile(r"^ip$|ip_?address", re.IGNORECASE)
IPV4_PATTERN = re.compile(r"^(\d+)\.(\d+)\.\d+\.\d+$")

MAX_DEPTH = 8


def mask_partial(value: Any) -> Any:
    """Keep the first and last character of a string, e.g. ``a***z``."""
    if not isinstance(value, str):
        return REDACTED
    if len(value) <= 2:
        return "*" * len(value)
    return f"{value[0]}***{value[-1]}"


def mask_email(value: Any) -> Any:
    if isinstance(value, str) and "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    return mask_partial(value)


def mask_ip(value: Any) -> Any:
    if isinstance(value, str):
        match = IPV4_PATTERN.match(value)
        if match:
            return f"{match.group(1)}.{match.group(2)}.***.***"
    return mask_partial(value)


def _sanitize_value(key: str, value: Any, depth: int) -> Any:
    if SENSITIVE_KEY_PATTERN.search(key):
        return REDACTED
    if PII_KEY_PATTERN.search(key) and not isinstance(value, (dict, list, tuple)):
        if EMAIL_KEY_PATTERN.search(key):
            return mask_email(value)
        if IP_KEY_PATTERN.search(key):
            return mask_ip(value)
        return mask_partial(value)
    return sanitize(value, depth + 1)


def sanitize(data: Any, depth: int = 0) -> Any:
    """
    Return a scrubbed copy of ``data`` that is safe to log.

    Mappings are sanitized key by key, lists element by element. Exceptions
    collapse to their type and message so response bodies or headers carried
    on them never reach the log.
    """
    if depth > MAX_DEPTH:
        return "[Truncated]"
    if isinstance(data, Mapping):
        return {str(k): _sanitize_value(str(k), v, depth) for k, v in data.items()}
    if isinstance(data, (list, tuple, set, frozenset)):
        return [sanitize(item, depth + 1) for item in data]
    if isinstance(data, BaseException):
        return {"type": type(data).__name__, "message": str(data)}
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    return str(data)


class SanitizingLogger(logging.LoggerAdapter):
    """LoggerAdapter that appends sanitized ``data=`` payloads as JSON."""

    def process(self, msg, kwargs):
        data = kwargs.pop("data", None)
        if data is not None:
            payload = json.dumps(sanitize(data), default=str, sort_keys=True)
            msg = f"{msg} - {payload}"
        return msg, kwargs


def get_logger(name: str, logger: Optional[logging.Logger] = None) -> SanitizingLogger:
    """Wrap ``logger`` (or ``logging.getLogger(name)``) in a SanitizingLogger."""
    if isinstance(logger, SanitizingLogger):
        return logger
    return SanitizingLogger(logger or logging.getLogger(name), {})
