import html
from typing import Any, Optional

from ..config import MIN_REASON_LENGTH


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Sanitize a string by escaping HTML special characters to prevent XSS.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(value.strip(), quote=True)


def sanitize_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Escape every string value in a (possibly nested) dict, e.g. machine readings"""
    if not data:
        return data

    sanitized = {}
    for key, value in data.items():
        if isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_dict(item) if isinstance(item, dict) else sanitize_string(item) if isinstance(item, str) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


def clean_reason(reason: Optional[str], min_length: int = MIN_REASON_LENGTH) -> Optional[str]:
    """
    Trim a free-text reason and check its length.
    Returns the escaped reason, or None if it is missing or too short.
    """
    if not reason or not isinstance(reason, str):
        return None
    trimmed = reason.strip()
    if len(trimmed) < min_length:
        return None
    return sanitize_string(trimmed)
