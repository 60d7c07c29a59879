"""
Forms-intake webhook router.

Receives form submissions from Basin and relays opted-in contacts to Klaviyo.

Endpoints:
  POST /basin   - form submission webhook (optional auth: shared secret)
  GET/PUT/PATCH/DELETE/OPTIONS /basin - rejected with 405

Processing order for a POST:
  auth gate -> body parsing -> email check -> opt-in check -> configuration
  check -> field derivation -> profile upsert -> list subscriptions

Submissions without an affirmative opt-in return 200 "skipped" and make no
Klaviyo calls.
"""

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from formrelay.auth import verify_shared_secret
from formrelay.config import Settings, get_settings
from formrelay.context import RequestContext
from formrelay.errors import (
    InternalError,
    MethodNotAllowedError,
    MissingConfigurationError,
    RelayError,
)
from formrelay.services.contact_normalizer import build_contact, is_opted_in, require_email
from formrelay.services.form_parser import parse_submission_body
from formrelay.services.klaviyo_client import KlaviyoClient
from formrelay.services.redaction import redact_email
from formrelay.services.subscription_workflow import sync_contact

router = APIRouter()

_STATUS_CODES = {"ok": 200, "partial": 207, "failed": 502}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_klaviyo_client(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[KlaviyoClient]:
    """One Klaviyo client per request, closed when the request finishes."""
    async with KlaviyoClient.from_settings(settings) as client:
        yield client


def get_request_context(request: Request) -> RequestContext:
    """Return the context assigned by the request-id middleware (or a fresh one)."""
    ctx = getattr(request.state, "ctx", None)
    if ctx is None:
        ctx = RequestContext()
        request.state.ctx = ctx
    return ctx


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

async def process_submission(
    payload: dict,
    settings: Settings,
    client: KlaviyoClient,
    ctx: RequestContext,
) -> JSONResponse:
    """
    Run one parsed submission through the relay and build the response.

    Raises RelayError subclasses for every caller-facing failure; anything
    unexpected is logged with its traceback and re-raised as InternalError.
    """
    try:
        email = require_email(payload)

        if not is_opted_in(payload.get("marketing")):
            ctx.log.info(f"{redact_email(email)} did not opt in; skipping")
            return JSONResponse(
                status_code=200,
                content={
                    "status": "skipped",
                    "reason": "no_marketing_consent",
                    "request_id": ctx.request_id,
                },
            )

        if not settings.is_configured:
            ctx.log.error("Klaviyo API key or list ids are not configured")
            raise MissingConfigurationError("Klaviyo API key or list ids are not configured")

        contact = build_contact(payload, settings, email=email)
        outcome = await sync_contact(client, contact, settings, ctx)

    except RelayError:
        raise
    except Exception as exc:
        ctx.log.exception(f"Unhandled error while processing submission: {exc!r}")
        raise InternalError("Internal server error")

    status = outcome.status
    ctx.log.info(f"Submission for {redact_email(contact.email)} finished: {status}")

    content = {
        "status": status,
        "request_id": ctx.request_id,
        "email": redact_email(contact.email),
        "profile": outcome.profile.model_dump(),
        "lists": [item.model_dump() for item in outcome.lists],
    }
    if status == "failed":
        content["reason"] = "upstream_error"
    return JSONResponse(status_code=_STATUS_CODES[status], content=content)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/basin")
async def receive_submission(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_webhook_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    client: KlaviyoClient = Depends(get_klaviyo_client),
) -> JSONResponse:
    """
    Form submission webhook.

    Accepts application/json (object or JSON-encoded string) and
    application/x-www-form-urlencoded bodies.
    """
    ctx = get_request_context(request)
    verify_shared_secret(settings.webhook_secret, authorization, x_webhook_secret)

    raw = await request.body()
    payload = parse_submission_body(raw, request.headers.get("content-type"))
    return await process_submission(payload, settings, client, ctx)


@router.api_route("/basin", methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def reject_method(request: Request) -> None:
    raise MethodNotAllowedError(f"Method {request.method} not allowed")
