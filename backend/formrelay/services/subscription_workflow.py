"""
Profile upsert + list subscription workflow.

Order of operations for one opted-in contact:

  1. Upsert the profile. A 409 on create is expected for returning contacts:
     the existing id is taken from the conflict metadata, or looked up by
     email once, and the profile is updated instead. Any other failure here
     is fatal for the request (UpstreamError).
  2. Subscribe the contact to every configured list concurrently. Each list
     is attempted independently and its outcome recorded; one list failing
     does not cancel the others.
  3. When SMS consent is rejected because the phone's region is not
     supported, that list is retried once with SMS omitted.
  4. When Klaviyo returns a job id, its status is polled for a bounded time.

No retries happen beyond the conflict path and the SMS fallback: profile
creates and subscription jobs are not idempotent on Klaviyo's side.
"""

import asyncio
import time
from typing import Iterable, Optional

from formrelay.config import Settings
from formrelay.context import RequestContext
from formrelay.errors import UpstreamError
from formrelay.models.klaviyo import ApiResult, ResultKind
from formrelay.models.submission import (
    ListOutcome,
    NormalizedContact,
    ProfileOutcome,
    SyncOutcome,
)
from formrelay.services.klaviyo_client import KlaviyoClient
from formrelay.services.redaction import redact_email, redact_phone, scrub

TERMINAL_JOB_STATUSES = frozenset({"complete", "cancelled", "failed"})
FAILED_JOB_STATUSES = frozenset({"cancelled", "failed"})


def sms_eligible(phone_number: str, allowed_calling_codes: Iterable[str]) -> bool:
    """
    True when the phone's calling code is allow-listed.

        ("+15551234567", ["1"])  -> True
        ("+447700900123", ["1"]) -> False
        ("", ["1"])              -> False
    """
    if not phone_number:
        return False
    digits = phone_number.lstrip("+")
    return any(code and digits.startswith(code) for code in allowed_calling_codes)


def _upstream_error(message: str, result: ApiResult, contact: NormalizedContact) -> UpstreamError:
    return UpstreamError(
        message,
        upstream_status=result.status,
        upstream_body=scrub(result.body, contact.email, contact.phone_number),
    )


def _job_details(result: ApiResult) -> tuple[Optional[str], Optional[str]]:
    """Return (job_id, status) from a subscription job response, if present."""
    data = result.data
    if not isinstance(data, dict):
        return None, None
    job_id = data.get("id")
    attributes = data.get("attributes") or {}
    status = attributes.get("status")
    return (str(job_id) if job_id else None), (str(status).lower() if status else None)


# ---------------------------------------------------------------------------
# Profile upsert
# ---------------------------------------------------------------------------

async def upsert_profile(
    client: KlaviyoClient,
    contact: NormalizedContact,
    ctx: RequestContext,
) -> ProfileOutcome:
    """
    Create the profile, or update it in place when it already exists.

    Raises:
        UpstreamError: create failed with a non-conflict status, or the
            conflict could not be resolved to an id, or the update failed.
    """
    attributes = contact.profile_attributes()
    result = await client.create_profile(attributes)

    if result.kind is ResultKind.SUCCESS:
        data = result.data
        profile_id = data.get("id") if isinstance(data, dict) else None
        if not profile_id:
            raise _upstream_error("Profile create returned no id", result, contact)
        ctx.log.info(f"Created profile {profile_id} for {redact_email(contact.email)}")
        return ProfileOutcome(action="created", profile_id=str(profile_id))

    if result.kind is not ResultKind.CONFLICT:
        ctx.log.error(f"Profile create failed with status {result.status}")
        raise _upstream_error("Profile create failed", result, contact)

    profile_id = result.duplicate_profile_id
    if profile_id:
        ctx.log.info(f"Profile exists ({profile_id}); updating")
    else:
        lookup, profile_id = await client.find_profile_id_by_email(contact.email)
        if not lookup.ok:
            ctx.log.error(f"Profile lookup failed with status {lookup.status}")
            raise _upstream_error("Profile lookup failed", lookup, contact)
        if not profile_id:
            ctx.log.error("Profile conflict reported but no profile matched the email")
            raise _upstream_error("Profile conflict could not be resolved", result, contact)
        ctx.log.info(f"Profile exists ({profile_id}, resolved by email lookup); updating")

    update = await client.update_profile(profile_id, attributes)
    if not update.ok:
        ctx.log.error(f"Profile update failed with status {update.status}")
        raise _upstream_error("Profile update failed", update, contact)

    return ProfileOutcome(action="updated", profile_id=profile_id)


# ---------------------------------------------------------------------------
# Subscription jobs
# ---------------------------------------------------------------------------

async def poll_job(
    client: KlaviyoClient,
    job_id: str,
    settings: Settings,
    ctx: RequestContext,
    status: Optional[str] = None,
) -> Optional[str]:
    """
    Poll a subscription job until it is terminal or the budget runs out.

    Returns the last observed status; a failed status read stops polling
    and keeps whatever was seen before.
    """
    deadline = time.monotonic() + settings.job_poll_timeout_seconds

    while status not in TERMINAL_JOB_STATUSES:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(settings.job_poll_interval_seconds, remaining))
        if time.monotonic() >= deadline:
            break
        result = await client.get_subscription_job(job_id)
        if not result.ok:
            ctx.log.warning(f"Job {job_id} status read failed ({result.status}); stop polling")
            break
        _, observed = _job_details(result)
        if observed:
            status = observed

    if status not in TERMINAL_JOB_STATUSES:
        ctx.log.info(f"Job {job_id} not terminal within budget (last status: {status})")
    return status


async def subscribe_list(
    client: KlaviyoClient,
    contact: NormalizedContact,
    list_id: str,
    settings: Settings,
    ctx: RequestContext,
) -> ListOutcome:
    include_sms = sms_eligible(contact.phone_number, settings.sms_calling_codes)
    sms_fallback = False

    result = await client.create_subscription_job(
        contact, list_id, include_sms, settings.custom_source
    )

    if include_sms and result.is_sms_region_rejection:
        ctx.log.warning(
            f"List {list_id}: SMS consent rejected for {redact_phone(contact.phone_number)}; "
            "retrying with email only"
        )
        include_sms = False
        sms_fallback = True
        result = await client.create_subscription_job(
            contact, list_id, include_sms, settings.custom_source
        )

    if not result.ok:
        ctx.log.error(f"List {list_id}: subscription failed with status {result.status}")
        return ListOutcome(
            list_id=list_id,
            subscribed=False,
            sms_consent=include_sms,
            sms_fallback=sms_fallback,
            error={
                "status": result.status,
                "body": scrub(result.body, contact.email, contact.phone_number),
            },
        )

    job_id, job_status = _job_details(result)
    if job_id:
        job_status = await poll_job(client, job_id, settings, ctx, job_status)
    else:
        job_status = job_status or "accepted"

    if job_status in FAILED_JOB_STATUSES:
        ctx.log.error(f"List {list_id}: job {job_id} ended as {job_status}")
        return ListOutcome(
            list_id=list_id,
            subscribed=False,
            sms_consent=include_sms,
            sms_fallback=sms_fallback,
            job_id=job_id,
            job_status=job_status,
            error={"status": result.status, "body": {"job_status": job_status}},
        )

    ctx.log.info(
        f"List {list_id}: subscribed {redact_email(contact.email)} "
        f"(sms={include_sms}, fallback={sms_fallback}, job={job_status})"
    )
    return ListOutcome(
        list_id=list_id,
        subscribed=True,
        sms_consent=include_sms,
        sms_fallback=sms_fallback,
        job_id=job_id,
        job_status=job_status,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def sync_contact(
    client: KlaviyoClient,
    contact: NormalizedContact,
    settings: Settings,
    ctx: RequestContext,
) -> SyncOutcome:
    """
    Upsert the profile, then subscribe it to every configured list.

    The upsert must succeed before any subscription starts. Subscriptions run
    concurrently and every branch is awaited; an unexpected exception in one
    branch is recorded as that list's failure.
    """
    profile = await upsert_profile(client, contact, ctx)

    results = await asyncio.gather(
        *(subscribe_list(client, contact, list_id, settings, ctx) for list_id in settings.list_ids),
        return_exceptions=True,
    )

    lists: list[ListOutcome] = []
    for list_id, result in zip(settings.list_ids, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            ctx.log.error(f"List {list_id}: unexpected error", exc_info=result)
            lists.append(
                ListOutcome(
                    list_id=list_id,
                    subscribed=False,
                    error={"status": None, "body": {"detail": "internal error"}},
                )
            )
        else:
            lists.append(result)

    return SyncOutcome(profile=profile, lists=lists)
