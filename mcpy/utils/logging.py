"""
Logging utilities for mcpy.

Keeps secrets carried in message params (tokens, api keys, passwords) out of
logs, filters out high-frequency protocol chatter and sets up the root logger.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional


# Patterns to detect potential secrets
SECRET_PATTERNS = [
    # Double-quoted JSON style
    (re.compile(r'("(?:password|passphrase|token|api_?key|apiKey|secret|authorization)"\s*:\s*")[^"]*(")',
                re.IGNORECASE), r'\1***REDACTED***\2'),
    # Single-quoted repr() style (for safe_repr)
    (re.compile(r"('(?:password|passphrase|token|api_?key|apiKey|secret|authorization)'\s*:\s*')[^']*(')",
                re.IGNORECASE), r"\1***REDACTED***\2"),
    # Bearer credentials
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*'), r'\1***REDACTED***'),
]

# Fields that should always be redacted in structured data
SECRET_FIELDS = {
    'password', 'passphrase', 'api_key', 'apikey', 'secret', 'authorization',
    'auth_token', 'authtoken', 'access_token', 'accesstoken', 'refresh_token', 'refreshtoken',
}

# Progress tokens are correlation handles, not credentials
_NOT_SECRET_FIELDS = {'progresstoken'}


def sanitize_string(text: str) -> str:
    """
    Sanitize a string by replacing potential secrets with placeholders.

    Args:
        text: String that may contain secrets

    Returns:
        Sanitized string with secrets replaced by placeholders
    """
    if not text:
        return text

    result = text
    for pattern, replacement in SECRET_PATTERNS:
        result = pattern.sub(replacement, result)

    return result


def _is_secret_field(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _NOT_SECRET_FIELDS:
        return False
    return key_lower == 'token' or any(secret_field in key_lower for secret_field in SECRET_FIELDS)


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize dicts, lists and strings inside a message body"""
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    if isinstance(value, str):
        return sanitize_string(value)
    return value


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively sanitize a dictionary by replacing secret values.

    Args:
        data: Dictionary that may contain secrets

    Returns:
        New dictionary with secrets replaced by placeholders
    """
    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        if isinstance(key, str) and _is_secret_field(key):
            result[key] = '***REDACTED***'
        else:
            result[key] = sanitize_value(value)

    return result


def safe_repr(obj: Any, max_length: int = 200) -> str:
    """
    Create a safe repr of an object with secrets sanitized and length limited.

    Args:
        obj: Object to represent
        max_length: Maximum length of the repr string

    Returns:
        Safe, sanitized repr string
    """
    repr_str = repr(sanitize_value(obj))
    sanitized = sanitize_string(repr_str)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + '...(truncated)'

    return sanitized


# Methods that fire many times per request and should not pollute INFO logs
NOISY_METHODS = {
    '$/progress',
    '$/cancelRequest',
}


class ExcludeNoisyMethodsFilter(logging.Filter):
    """Filter out log records about high-frequency protocol notifications.

    They can still be seen at DEBUG level if needed for troubleshooting.
    """

    def __init__(self, methods: Optional[Iterable[str]] = None):
        super().__init__()
        self.methods = set(methods) if methods is not None else set(NOISY_METHODS)

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False to exclude the record from logging."""
        if record.levelno <= logging.DEBUG:
            return True

        message = record.getMessage()
        for method in self.methods:
            if method in message:
                return False

        return True


def configure_logging(level: Optional[str] = None, stream=None):
    """Configure the root logger for mcpy processes"""
    if level is None:
        from ..config import get_config
        level = get_config().log_level

    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=stream,
    )
    logging.getLogger().setLevel(numeric_level)
    noisy_filter = ExcludeNoisyMethodsFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, ExcludeNoisyMethodsFilter) for f in handler.filters):
            handler.addFilter(noisy_filter)
