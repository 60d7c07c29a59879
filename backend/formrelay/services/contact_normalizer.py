"""
Normalization of raw form submissions into NormalizedContact.

Converts the flat key/value mapping posted by the forms provider into the
validated view the subscription workflow works with:

  - marketing opt-in evaluated against a fixed token set
  - full name split into first / last
  - phone kept only when it is valid E.164
  - country resolved from the explicit field, a US-state heuristic, the
    geocoded fallback, or the configured default
  - campaign properties pruned of empty values
"""

import logging
import re
from typing import Any, Optional

from formrelay.config import Settings
from formrelay.errors import MissingEmailError
from formrelay.models.submission import ContactLocation, NormalizedContact
from formrelay.services.redaction import redact_email

logger = logging.getLogger(__name__)

# Accepted marketing consent values (compared lower-cased and trimmed).
OPT_IN_TOKENS = frozenset({"on", "true", "1", "yes", "y", "checked"})

_E164_RE = re.compile(r"^\+[1-9]\d{0,14}$")
_PHONE_SEPARATORS_RE = re.compile(r"[\s\-.()]")

# Free-form campaign fields copied to profile properties
_PROPERTY_FIELDS = ("goal", "group", "payment_method", "comments")

_US_STATE_CODES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI",
    "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN",
    "MS", "MO", "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH",
    "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA",
    "WV", "WI", "WY", "PR", "GU", "VI", "AS", "MP",
})

_US_STATE_NAMES = frozenset({
    "alabama", "alaska", "arizona", "arkansas", "california", "colorado",
    "connecticut", "delaware", "district of columbia", "florida", "georgia",
    "hawaii", "idaho", "illinois", "indiana", "iowa", "kansas", "kentucky",
    "louisiana", "maine", "maryland", "massachusetts", "michigan",
    "minnesota", "mississippi", "missouri", "montana", "nebraska", "nevada",
    "new hampshire", "new jersey", "new mexico", "new york",
    "north carolina", "north dakota", "ohio", "oklahoma", "oregon",
    "pennsylvania", "rhode island", "south carolina", "south dakota",
    "tennessee", "texas", "utah", "vermont", "virginia", "washington",
    "west virginia", "wisconsin", "wyoming", "puerto rico", "guam",
})


def _text(value: Any) -> str:
    """Coerce a submitted value to a trimmed string; None and lists become ""."""
    if value is None or isinstance(value, (list, dict)):
        return ""
    return str(value).strip()


def _first(payload: dict, *keys: str) -> str:
    for key in keys:
        value = _text(payload.get(key))
        if value:
            return value
    return ""


def is_opted_in(value: Any) -> bool:
    """
    Return True only for an explicit affirmative consent signal.

    Examples:
        True       -> True
        "on"       -> True
        " Yes "    -> True
        "checked"  -> True
        False      -> False
        1          -> False   (only the string "1" counts)
        "off"      -> False
        None       -> False
    """
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return False
    return value.strip().lower() in OPT_IN_TOKENS


def require_email(payload: dict) -> str:
    """Return the trimmed email or raise MissingEmailError."""
    email = _text(payload.get("email"))
    if not email:
        raise MissingEmailError("Missing email")
    return email


def split_name(full_name: str) -> tuple[str, str]:
    """
    Split at the first whitespace run.

        "Jane Doe"          -> ("Jane", "Doe")
        "Mary Ann  Smith"   -> ("Mary", "Ann  Smith")
        "Cher"              -> ("Cher", "")
    """
    parts = full_name.strip().split(None, 1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1].strip()


def normalize_phone(raw: str) -> str:
    """
    Return the phone in E.164 form, or "" when it does not conform.

    Spaces, dashes, dots and parentheses are stripped first, so
    "+1 (555) 123-4567" is kept as "+15551234567". Numbers without a leading
    "+" are dropped rather than guessed.
    """
    if not raw:
        return ""
    candidate = _PHONE_SEPARATORS_RE.sub("", raw)
    if _E164_RE.match(candidate):
        return candidate
    return ""


def is_us_state(value: str) -> bool:
    if not value:
        return False
    return value.strip().upper() in _US_STATE_CODES or value.strip().lower() in _US_STATE_NAMES


def resolve_country(
    explicit: str,
    region: str,
    geo_country: str,
    default_country: str,
) -> str:
    if explicit:
        return explicit
    if is_us_state(region):
        return "US"
    if geo_country:
        return geo_country
    return default_country


def build_contact(payload: dict, settings: Settings, email: Optional[str] = None) -> NormalizedContact:
    """
    Derive a NormalizedContact from an opted-in submission.

    email may be passed when the caller already validated it.
    """
    email = email or require_email(payload)
    first_name, last_name = split_name(_text(payload.get("name")))

    raw_phone = _text(payload.get("phone"))
    phone_number = normalize_phone(raw_phone)
    if raw_phone and not phone_number:
        logger.info("Dropping non-E.164 phone for %s", redact_email(email))

    region = _first(payload, "state", "region") or _text(payload.get("geo_region"))
    location = ContactLocation(
        address1=_first(payload, "street1", "address1"),
        address2=_first(payload, "street2", "address2"),
        city=_text(payload.get("city")) or _text(payload.get("geo_city")),
        region=region,
        country=resolve_country(
            explicit=_text(payload.get("country")),
            region=region,
            geo_country=_text(payload.get("geo_country")),
            default_country=settings.default_country,
        ),
        zip=_first(payload, "zip", "postal_code"),
    )

    properties: dict[str, Any] = {}
    for key in _PROPERTY_FIELDS:
        value = _text(payload.get(key))
        if value:
            properties[key] = value
    if settings.custom_source:
        properties["source"] = settings.custom_source

    return NormalizedContact(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone_number=phone_number,
        location=location,
        properties=properties,
    )
