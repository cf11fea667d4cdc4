from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from subsync.core.crypto import verify_signature
from subsync.core.settings import S
from subsync.metrics import record_webhook
from subsync.models import parse_event
from subsync.services.webhook import DispatchResult, Outcome, WebhookProcessor, build_processor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stripe-webhook"])

WEBHOOK_PATHS = ("/api/stripe/webhook", "/webhooks/stripe")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, stripe-signature",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@lru_cache(maxsize=1)
def get_processor() -> WebhookProcessor:
    from subsync.core.tables import T

    return build_processor(S, T)


@router.options(WEBHOOK_PATHS[0])
@router.options(WEBHOOK_PATHS[1])
def stripe_webhook_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.api_route(WEBHOOK_PATHS[0], methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
@router.api_route(WEBHOOK_PATHS[1], methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def stripe_webhook_method_not_allowed() -> JSONResponse:
    return JSONResponse({"detail": "Method not allowed"}, status_code=405, headers={**CORS_HEADERS, "Allow": "POST, OPTIONS"})


@router.post(WEBHOOK_PATHS[0])
@router.post(WEBHOOK_PATHS[1])
async def stripe_webhook(req: Request, processor: WebhookProcessor = Depends(get_processor)) -> Dict[str, Any]:
    settings = processor.settings
    if not settings.stripe_webhook_secret:
        raise HTTPException(501, "Stripe webhook secret not configured")

    payload = await req.body()
    sig = req.headers.get("stripe-signature") or ""
    if not verify_signature(
        payload,
        sig,
        settings.stripe_webhook_secret,
        tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    ):
        logger.warning(f"rejected stripe webhook: invalid signature ({len(payload)} bytes)")
        record_webhook(None, Outcome.INVALID_SIGNATURE.value)
        raise HTTPException(400, "Invalid signature")

    # authenticated from here on: always acknowledge, never let Stripe retry forever
    event_type = None
    try:
        event = parse_event(json.loads(payload.decode("utf-8") or "{}"))
        event_type = event.type
        result = await run_in_threadpool(processor.handle, event)
    except Exception:
        logger.exception(f"stripe webhook processing failed (type={event_type or 'unparsed'})")
        result = DispatchResult(Outcome.FAILED, "unexpected error")

    logger.info(f"stripe webhook {event_type or 'unparsed'}: {result.outcome.value} {result.detail}".rstrip())
    record_webhook(event_type, result.outcome.value)
    return {"received": True, "outcome": result.outcome.value}
