"""
Redaction helpers for logs and echoed diagnostics.

Emails keep the first character of the local part and the domain;
phones keep only their last two digits.
"""

import re
from typing import Any, Optional


def redact_email(email: Optional[str]) -> str:
    """
    Examples:
        "jane@example.com" -> "j***@example.com"
        "x"                -> "x***"
        ""                 -> ""
    """
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    return f"{local[:1]}***{sep}{domain}"


def redact_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"***{digits[-2:]}"


def _redact_text(text: str, patterns: list) -> str:
    for pattern, replacement in patterns:
        text = pattern.sub(replacement, text)
    return text


def scrub(value: Any, email: Optional[str] = None, phone: Optional[str] = None) -> Any:
    """
    Replace every occurrence of the full email / phone inside an upstream
    response body (dict, list or text) with its redacted form.

    Nested dicts and lists are walked and every string is redacted, keys
    included; the result has the same shape as the input. Email matching
    ignores case since Klaviyo echoes addresses lower-cased.
    """
    if value is None:
        return None

    patterns = []
    if email:
        patterns.append((re.compile(re.escape(email), re.IGNORECASE), redact_email(email)))
    if phone:
        patterns.append((re.compile(re.escape(phone)), redact_phone(phone)))
    if not patterns:
        return value

    def walk(item: Any) -> Any:
        if isinstance(item, str):
            return _redact_text(item, patterns)
        if isinstance(item, dict):
            return {walk(key): walk(val) for key, val in item.items()}
        if isinstance(item, (list, tuple)):
            return [walk(val) for val in item]
        return item

    return walk(value)
