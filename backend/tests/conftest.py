"""
Shared fixtures: an in-memory fake of the Klaviyo API served through
httpx.MockTransport, and a TestClient wired to it.

No test makes a real network call.
"""

import json
import re
from typing import Optional

import httpx
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from formrelay.config import Settings, get_settings
from formrelay.services.klaviyo_client import KlaviyoClient

_EMAIL_FILTER_RE = re.compile(r'equals\(email,"(?P<email>.*)"\)')

SMS_REGION_ERROR = {
    "id": "e7b1c2d4",
    "status": 400,
    "code": "invalid",
    "title": "Invalid input.",
    "detail": "SMS consent is not supported for this phone number's region.",
    "source": {"pointer": "/data/attributes/profiles/data/0/attributes/phone_number"},
}


def _error(status: int, detail: str, code: str = "error", **extra) -> httpx.Response:
    error = {"status": status, "code": code, "title": "Error.", "detail": detail}
    error.update(extra)
    return httpx.Response(status, json={"errors": [error]})


class FakeKlaviyo:
    """
    Minimal stateful stand-in for the Klaviyo endpoints the relay uses.

    Knobs:
      include_duplicate_id  409 responses carry meta.duplicate_profile_id
      sms_unsupported       phone prefixes whose SMS consent is rejected
      list_failures         list_id -> status code returned by subscribe
      profile_create_status force a status code on profile create
      job_statuses          when set, subscribe returns a job id and each
                            status read returns the next value (last repeats)
    """

    def __init__(self):
        self.profiles: dict[str, dict] = {}
        self.subscriptions: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.include_duplicate_id = True
        self.sms_unsupported: set[str] = set()
        self.list_failures: dict[str, int] = {}
        self.profile_create_status: Optional[int] = None
        self.job_statuses: Optional[list[str]] = None
        self._job_reads = 0
        self._counter = 0

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def calls(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        ]

    @property
    def subscribe_calls(self) -> list[httpx.Request]:
        return self.calls("POST", "/api/profile-subscription-bulk-create-jobs/")

    @property
    def lookup_calls(self) -> list[httpx.Request]:
        return self.calls("GET", "/api/profiles/")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:04d}"

    def _find_by_email(self, email: str) -> Optional[str]:
        for profile_id, attributes in self.profiles.items():
            if attributes.get("email") == email:
                return profile_id
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else None

        if path == "/api/profiles/" and request.method == "POST":
            return self._create_profile(body)
        if path == "/api/profiles/" and request.method == "GET":
            return self._lookup_profiles(request.url.params.get("filter", ""))
        if path.startswith("/api/profiles/") and request.method == "PATCH":
            return self._update_profile(path.split("/")[3], body)
        if path == "/api/profile-subscription-bulk-create-jobs/" and request.method == "POST":
            return self._subscribe(body)
        if path.startswith("/api/profile-subscription-bulk-create-jobs/") and request.method == "GET":
            return self._read_job(path.split("/")[3])
        return _error(404, "Not found", code="not_found")

    def _create_profile(self, body: dict) -> httpx.Response:
        if self.profile_create_status:
            return _error(self.profile_create_status, "Forced failure")

        attributes = body["data"]["attributes"]
        existing = self._find_by_email(attributes["email"])
        if existing:
            meta = {"duplicate_profile_id": existing} if self.include_duplicate_id else {}
            return _error(
                409,
                "A profile already exists with one of these identifiers.",
                code="duplicate_profile",
                source={"pointer": "/data/attributes"},
                meta=meta,
            )

        profile_id = self._next_id("01PROFILE")
        self.profiles[profile_id] = dict(attributes)
        return httpx.Response(
            201,
            json={"data": {"type": "profile", "id": profile_id, "attributes": attributes}},
        )

    def _lookup_profiles(self, filter_expr: str) -> httpx.Response:
        match = _EMAIL_FILTER_RE.match(filter_expr)
        profile_id = self._find_by_email(match.group("email")) if match else None
        data = [{"type": "profile", "id": profile_id}] if profile_id else []
        return httpx.Response(200, json={"data": data})

    def _update_profile(self, profile_id: str, body: dict) -> httpx.Response:
        if profile_id not in self.profiles:
            return _error(404, "Profile not found", code="not_found")
        self.profiles[profile_id].update(body["data"]["attributes"])
        return httpx.Response(
            200,
            json={"data": {"type": "profile", "id": profile_id,
                           "attributes": self.profiles[profile_id]}},
        )

    def _subscribe(self, body: dict) -> httpx.Response:
        list_id = body["data"]["relationships"]["list"]["data"]["id"]
        profile = body["data"]["attributes"]["profiles"]["data"][0]["attributes"]

        if list_id in self.list_failures:
            return _error(self.list_failures[list_id], "List subscription failed")

        phone = profile.get("phone_number", "")
        if "sms" in profile["subscriptions"] and any(
            phone.startswith(prefix) for prefix in self.sms_unsupported
        ):
            return httpx.Response(400, json={"errors": [SMS_REGION_ERROR]})

        self.subscriptions.append({"list_id": list_id, **profile})
        if self.job_statuses is None:
            return httpx.Response(202)
        return httpx.Response(
            202,
            json={"data": {"type": "profile-subscription-bulk-create-job",
                           "id": self._next_id("job-"),
                           "attributes": {"status": "queued"}}},
        )

    def _read_job(self, job_id: str) -> httpx.Response:
        statuses = self.job_statuses or ["complete"]
        status = statuses[min(self._job_reads, len(statuses) - 1)]
        self._job_reads += 1
        return httpx.Response(
            200,
            json={"data": {"type": "profile-subscription-bulk-create-job",
                           "id": job_id, "attributes": {"status": status}}},
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_klaviyo() -> FakeKlaviyo:
    return FakeKlaviyo()


@pytest.fixture()
def relay_env(monkeypatch):
    """A fully configured environment with two lists and no webhook secret."""
    monkeypatch.setenv("KLAVIYO_PRIVATE_KEY", "pk_test_123")
    monkeypatch.setenv("KLAVIYO_LIST_IDS", "LIST_A,LIST_B")
    monkeypatch.setenv("JOB_POLL_TIMEOUT_SECONDS", "1")
    monkeypatch.setenv("JOB_POLL_INTERVAL_SECONDS", "0")
    for name in (
        "KLAVIYO_API_KEY", "KLAVIYO_LIST_1", "KLAVIYO_LIST_2", "KLAVIYO_LIST_ID",
        "WEBHOOK_SECRET", "DEFAULT_COUNTRY", "SMS_ALLOWED_CALLING_CODES",
        "KLAVIYO_BASE_URL", "KLAVIYO_REVISION", "KLAVIYO_CUSTOM_SOURCE",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        klaviyo_api_key="pk_test_123",
        list_ids=["LIST_A", "LIST_B"],
        job_poll_timeout_seconds=1.0,
        job_poll_interval_seconds=0.0,
    )


@pytest.fixture()
def client(relay_env, fake_klaviyo):
    """TestClient with the Klaviyo client dependency routed to the fake."""
    from formrelay.main import app
    from formrelay.routers.webhook import get_klaviyo_client

    async def _fake_client(settings: Settings = Depends(get_settings)):
        async with httpx.AsyncClient(transport=fake_klaviyo.transport()) as http:
            yield KlaviyoClient.from_settings(settings, http_client=http)

    app.dependency_overrides[get_klaviyo_client] = _fake_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
