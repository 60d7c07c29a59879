"""
Runtime configuration.

Values come from environment variables (optionally loaded from a .env file).
Settings are rebuilt on every call to get_settings() so that a request always
sees the current environment and nothing is cached between invocations.

Environment variables
---------------------
KLAVIYO_PRIVATE_KEY        Klaviyo private API key. KLAVIYO_API_KEY is
                           accepted as a legacy alias.
KLAVIYO_LIST_IDS           Comma-separated list ids. Falls back to the legacy
                           KLAVIYO_LIST_1 / KLAVIYO_LIST_2 / KLAVIYO_LIST_ID.
WEBHOOK_SECRET             Optional shared secret for the inbound webhook.
DEFAULT_COUNTRY            Country used when none can be resolved.
SMS_ALLOWED_CALLING_CODES  Comma-separated calling codes eligible for SMS
                           consent (default: "1").
KLAVIYO_BASE_URL           API origin (default: https://a.klaviyo.com).
KLAVIYO_REVISION           Pinned API revision header.
KLAVIYO_CUSTOM_SOURCE      Consent source label recorded on subscriptions.
KLAVIYO_TIMEOUT_SECONDS    Per-call HTTP timeout.
JOB_POLL_TIMEOUT_SECONDS   Wall-clock budget for subscription job polling.
JOB_POLL_INTERVAL_SECONDS  Delay between two job status reads.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_BASE_URL = "https://a.klaviyo.com"
DEFAULT_REVISION = "2024-10-15"
DEFAULT_CUSTOM_SOURCE = "Fundraiser Request Form"


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _resolve_list_ids() -> List[str]:
    """
    Return the configured list ids, de-duplicated in order.

    KLAVIYO_LIST_IDS wins when set. Otherwise the legacy per-list variables
    are collected (KLAVIYO_LIST_1, KLAVIYO_LIST_2, then KLAVIYO_LIST_ID).
    """
    list_ids = _split_csv(os.getenv("KLAVIYO_LIST_IDS"))
    if not list_ids:
        for name in ("KLAVIYO_LIST_1", "KLAVIYO_LIST_2", "KLAVIYO_LIST_ID"):
            value = (os.getenv(name) or "").strip()
            if value:
                list_ids.append(value)

    seen: set = set()
    unique: List[str] = []
    for list_id in list_ids:
        if list_id not in seen:
            seen.add(list_id)
            unique.append(list_id)
    return unique


class Settings(BaseModel):
    klaviyo_api_key: Optional[str] = None
    list_ids: List[str] = Field(default_factory=list)
    webhook_secret: Optional[str] = None
    default_country: str = ""
    sms_calling_codes: List[str] = Field(default_factory=lambda: ["1"])

    klaviyo_base_url: str = DEFAULT_BASE_URL
    klaviyo_revision: str = DEFAULT_REVISION
    custom_source: str = DEFAULT_CUSTOM_SOURCE
    timeout_seconds: float = 10.0

    job_poll_timeout_seconds: float = 3.0
    job_poll_interval_seconds: float = 0.5

    @property
    def is_configured(self) -> bool:
        return bool(self.klaviyo_api_key) and bool(self.list_ids)


def get_settings() -> Settings:
    """Build Settings from the current environment."""
    sms_codes_env = os.getenv("SMS_ALLOWED_CALLING_CODES")
    sms_codes = ["1"] if sms_codes_env is None else _split_csv(sms_codes_env)

    return Settings(
        klaviyo_api_key=(
            os.getenv("KLAVIYO_PRIVATE_KEY") or os.getenv("KLAVIYO_API_KEY") or None
        ),
        list_ids=_resolve_list_ids(),
        webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
        default_country=os.getenv("DEFAULT_COUNTRY", "").strip().upper(),
        sms_calling_codes=[code.lstrip("+") for code in sms_codes],
        klaviyo_base_url=os.getenv("KLAVIYO_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        klaviyo_revision=os.getenv("KLAVIYO_REVISION", DEFAULT_REVISION),
        custom_source=os.getenv("KLAVIYO_CUSTOM_SOURCE", DEFAULT_CUSTOM_SOURCE),
        timeout_seconds=float(os.getenv("KLAVIYO_TIMEOUT_SECONDS", "10")),
        job_poll_timeout_seconds=float(os.getenv("JOB_POLL_TIMEOUT_SECONDS", "3")),
        job_poll_interval_seconds=float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "0.5")),
    )
