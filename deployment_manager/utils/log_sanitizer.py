"""
Log sanitization utilities.

Keeps secrets and credentials out of log output and prevents log injection.
"""

import copy
import re
from typing import Any

SENSITIVE_KEYS = ("password", "secret", "token", "credentials", "private_key", "uri")
MASK = "*****"


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """
    Sanitize a value for safe logging.

    Removes control characters and newlines that could be used for log
    injection, and truncates long values.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output (default 100)

    Returns:
        Sanitized string safe for logging
    """
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f\r\n\t]", "", str(value))

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def mask_sensitive_info(value: Any) -> Any:
    """
    Return a copy of value with sensitive fields masked.

    Any dict key containing one of SENSITIVE_KEYS has its value replaced,
    recursively through nested dicts and lists.
    """
    masked = copy.deepcopy(value)
    _mask_in_place(masked)
    return masked


def _mask_in_place(value: Any) -> None:
    if isinstance(value, dict):
        for key in list(value.keys()):
            if any(s in str(key).lower() for s in SENSITIVE_KEYS) and value[key] is not None:
                value[key] = MASK
            else:
                _mask_in_place(value[key])
    elif isinstance(value, list):
        for item in value:
            _mask_in_place(item)
