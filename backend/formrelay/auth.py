"""
Optional shared-secret check for the inbound webhook.

When WEBHOOK_SECRET is configured the request must carry it either as
"Authorization: Bearer <secret>" (exact form, case-sensitive scheme) or in
the provider-agnostic X-Webhook-Secret header. When no secret is configured
the check is skipped.
"""

import hmac
from typing import Optional

from formrelay.errors import UnauthorizedError


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        return None
    return parts[1]


def verify_shared_secret(
    expected: Optional[str],
    authorization: Optional[str] = None,
    x_webhook_secret: Optional[str] = None,
) -> None:
    """
    Raise UnauthorizedError unless a configured secret is presented.

    Args:
        expected: configured secret, or None/"" to disable the check
        authorization: raw Authorization header
        x_webhook_secret: raw X-Webhook-Secret header
    """
    if not expected:
        return

    provided = _bearer_token(authorization) or x_webhook_secret
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise UnauthorizedError("Invalid webhook secret")
