"""
Inbound body parsing.

Basin (and most forms-intake services) can deliver a submission as a JSON
object, as a JSON-encoded string wrapping that object, or as URL-encoded form
data. parse_submission_body detects which one it got and always returns a
flat dict; anything it cannot make sense of becomes an empty dict.
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import parse_qsl

logger = logging.getLogger(__name__)

_JSON_TYPES = ("application/json", "text/json")
_FORM_TYPES = ("application/x-www-form-urlencoded",)


def _media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def parse_json_body(text: str) -> Optional[dict]:
    """
    Parse a JSON object, unwrapping one level of JSON-encoded string.

    Returns None when the text is not JSON or does not hold an object.
    """
    try:
        value: Any = json.loads(text)
    except ValueError:
        return None

    # Some senders double-encode: "{\"email\": \"...\"}"
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None

    return value if isinstance(value, dict) else None


def parse_form_body(text: str) -> dict:
    """Parse URL-encoded form data; repeated keys keep the last value."""
    return dict(parse_qsl(text, keep_blank_values=True))


def parse_submission_body(raw: bytes, content_type: Optional[str] = None) -> dict:
    if not raw or not raw.strip():
        return {}

    text = _decode(raw)
    media_type = _media_type(content_type)

    if media_type in _JSON_TYPES or media_type.endswith("+json"):
        parsed = parse_json_body(text)
        if parsed is None:
            logger.warning("Malformed JSON body ignored (%d bytes)", len(raw))
            return {}
        return parsed

    if media_type in _FORM_TYPES:
        return parse_form_body(text)

    # Unknown or missing content type: try JSON first, then form encoding.
    parsed = parse_json_body(text)
    if parsed is not None:
        return parsed
    if "=" in text:
        return parse_form_body(text)

    logger.warning("Unrecognized body (content-type %r) ignored", media_type or None)
    return {}
