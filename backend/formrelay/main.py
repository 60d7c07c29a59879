"""
Form Relay API
FastAPI application relaying forms-intake submissions to Klaviyo.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from formrelay.config import get_settings
from formrelay.context import RequestContext
from formrelay.errors import register_error_handlers
from formrelay.routers import webhook

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# httpx logs full request URLs at INFO; profile lookups carry the email there.
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Form Relay API",
    description="Relays opted-in form submissions to Klaviyo profiles and lists",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins, read from the CORS_ORIGINS environment variable as
    a comma-separated list. Webhook senders are servers, so the default is
    no browser origins at all.

    Duplicates are removed while preserving order.
    """
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if not cors_env:
        return []

    seen: set = set()
    origins: List[str] = []
    for origin in (o.strip() for o in cors_env.split(",")):
        if origin and origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_methods=["POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    """Attach a fresh RequestContext and echo its id in X-Request-ID."""
    ctx = RequestContext()
    request.state.ctx = ctx
    response = await call_next(request)
    response.headers["X-Request-ID"] = ctx.request_id
    return response


register_error_handlers(app)

# Include routers
app.include_router(webhook.router, prefix="/api/webhooks", tags=["webhooks"])


@app.on_event("startup")
async def log_startup() -> None:
    """Log which Klaviyo revision and how many lists the relay will use."""
    settings = get_settings()
    logger.info(
        "Form Relay starting: revision=%s lists=%d secret=%s",
        settings.klaviyo_revision,
        len(settings.list_ids),
        "configured" if settings.webhook_secret else "not configured",
    )
    if not settings.is_configured:
        logger.warning(
            "KLAVIYO_PRIVATE_KEY or KLAVIYO_LIST_IDS missing; opted-in submissions will fail"
        )


@app.get("/")
async def root():
    return {"message": "Form Relay API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}
