"""
Error taxonomy for the webhook relay.

Every error that reaches the caller is a RelayError subclass carrying an HTTP
status code and a stable machine-readable reason string. The FastAPI
exception handlers registered by register_error_handlers turn them into JSON
bodies.

Recoverable upstream cases (profile conflict, SMS region rejection) never
become exceptions; they are handled inside the subscription workflow.
"""

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from formrelay.context import RequestContext


class RelayError(Exception):
    status_code: int = 500
    reason: str = "internal_error"
    headers: Optional[dict] = None

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)
        self.message = message or self.reason

    def to_payload(self, request_id: str) -> dict:
        return {
            "status": "error",
            "reason": self.reason,
            "message": self.message,
            "request_id": request_id,
        }


class MethodNotAllowedError(RelayError):
    status_code = 405
    reason = "method_not_allowed"
    headers = {"Allow": "POST"}


class UnauthorizedError(RelayError):
    status_code = 401
    reason = "unauthorized"


class MissingEmailError(RelayError):
    status_code = 400
    reason = "missing_email"


class MissingConfigurationError(RelayError):
    status_code = 500
    reason = "missing_configuration"


class UpstreamError(RelayError):
    """
    A Klaviyo call failed in a way the workflow cannot absorb.

    upstream_body should already be redacted by the caller; it is echoed to
    the webhook sender for support debugging.
    """

    status_code = 502
    reason = "upstream_error"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_body: Any = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body

    def to_payload(self, request_id: str) -> dict:
        payload = super().to_payload(request_id)
        payload["upstream_status"] = self.upstream_status
        payload["upstream_body"] = self.upstream_body
        return payload


class InternalError(RelayError):
    status_code = 500
    reason = "internal_error"


def register_error_handlers(app) -> None:
    """Map RelayError subclasses, and anything unexpected, to JSON bodies."""

    def _context(request: Request) -> RequestContext:
        return getattr(request.state, "ctx", None) or RequestContext()

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        ctx = _context(request)
        if isinstance(exc, UpstreamError):
            ctx.log.warning(f"Upstream error ({exc.upstream_status}): {exc.message}")
        elif exc.status_code < 500:
            ctx.log.info(f"Rejected request: {exc.reason}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(ctx.request_id),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        ctx = _context(request)
        ctx.log.exception(f"Unhandled exception on {request.method} {request.url.path}")
        error = InternalError("Internal server error")
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_payload(ctx.request_id),
            headers={"X-Request-ID": ctx.request_id},
        )
