"""
Klaviyo REST client.

Thin async wrapper over httpx for the five calls the relay makes:

  create_profile                 POST  /api/profiles/
  update_profile                 PATCH /api/profiles/{id}/
  find_profile_id_by_email       GET   /api/profiles/?filter=equals(email,"...")
  create_subscription_job        POST  /api/profile-subscription-bulk-create-jobs/
  get_subscription_job           GET   /api/profile-subscription-bulk-create-jobs/{id}/

Every method returns an ApiResult; HTTP error statuses and transport failures
are reported through ApiResult.kind, never raised. The API key is only ever
placed in the Authorization header and is never logged.
"""

import logging
from typing import Any, Optional

import httpx

from formrelay.config import Settings
from formrelay.models.klaviyo import ApiResult
from formrelay.models.submission import NormalizedContact

logger = logging.getLogger(__name__)

_JSON_API = "application/vnd.api+json"


def build_headers(api_key: str, revision: str) -> dict[str, str]:
    return {
        "Authorization": f"Klaviyo-API-Key {api_key}",
        "revision": revision,
        "accept": _JSON_API,
        "content-type": _JSON_API,
    }


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def subscription_job_payload(
    contact: NormalizedContact,
    list_id: str,
    include_sms: bool,
    custom_source: str,
) -> dict:
    """
    Build the bulk-subscribe body for one profile and one list.

    Email marketing consent is always requested; SMS marketing consent only
    when include_sms is set (phone_number is then sent alongside it).
    """
    subscriptions: dict[str, Any] = {
        "email": {"marketing": {"consent": "SUBSCRIBED"}},
    }
    profile_attributes: dict[str, Any] = {"email": contact.email}
    if include_sms and contact.phone_number:
        profile_attributes["phone_number"] = contact.phone_number
        subscriptions["sms"] = {"marketing": {"consent": "SUBSCRIBED"}}
    profile_attributes["subscriptions"] = subscriptions

    attributes: dict[str, Any] = {
        "profiles": {
            "data": [{"type": "profile", "attributes": profile_attributes}],
        },
    }
    if custom_source:
        attributes["custom_source"] = custom_source

    return {
        "data": {
            "type": "profile-subscription-bulk-create-job",
            "attributes": attributes,
            "relationships": {
                "list": {"data": {"type": "list", "id": list_id}},
            },
        }
    }


class KlaviyoClient:
    """
    Per-request Klaviyo client.

    Use as an async context manager, or pass an existing httpx.AsyncClient
    (tests inject one backed by httpx.MockTransport). An injected client is
    not closed by this wrapper.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        revision: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._headers = build_headers(api_key, revision)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "KlaviyoClient":
        return cls(
            api_key=settings.klaviyo_api_key or "",
            base_url=settings.klaviyo_base_url,
            revision=settings.klaviyo_revision,
            timeout=settings.timeout_seconds,
            http_client=http_client,
        )

    async def __aenter__(self) -> "KlaviyoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> ApiResult:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.request(
                method, url, json=json, params=params, headers=self._headers
            )
        except httpx.HTTPError as exc:
            logger.error(f"Klaviyo {method} {path} failed before a response: {exc!r}")
            return ApiResult.from_response(None, {"errors": [{"detail": str(exc)}]})

        result = ApiResult.from_response(response.status_code, _parse_body(response))
        logger.debug(f"Klaviyo {method} {path} -> {response.status_code}")
        return result

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def create_profile(self, attributes: dict) -> ApiResult:
        body = {"data": {"type": "profile", "attributes": attributes}}
        return await self._request("POST", "/api/profiles/", json=body)

    async def update_profile(self, profile_id: str, attributes: dict) -> ApiResult:
        body = {"data": {"type": "profile", "id": profile_id, "attributes": attributes}}
        return await self._request("PATCH", f"/api/profiles/{profile_id}/", json=body)

    async def find_profile_id_by_email(self, email: str) -> tuple[ApiResult, Optional[str]]:
        """
        Look a profile up by exact email.

        Returns the raw result plus the first matching id (None if the lookup
        failed or matched nothing).
        """
        escaped = email.replace('"', '\\"')
        result = await self._request(
            "GET",
            "/api/profiles/",
            params={"filter": f'equals(email,"{escaped}")'},
        )
        if not result.ok:
            return result, None

        data = result.data
        if isinstance(data, list) and data and isinstance(data[0], dict):
            profile_id = data[0].get("id")
            return result, str(profile_id) if profile_id else None
        return result, None

    # ------------------------------------------------------------------
    # List subscriptions
    # ------------------------------------------------------------------

    async def create_subscription_job(
        self,
        contact: NormalizedContact,
        list_id: str,
        include_sms: bool,
        custom_source: str = "",
    ) -> ApiResult:
        body = subscription_job_payload(contact, list_id, include_sms, custom_source)
        return await self._request(
            "POST", "/api/profile-subscription-bulk-create-jobs/", json=body
        )

    async def get_subscription_job(self, job_id: str) -> ApiResult:
        return await self._request(
            "GET", f"/api/profile-subscription-bulk-create-jobs/{job_id}/"
        )
