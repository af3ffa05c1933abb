"""Webhook routes for Simpro job and quote events."""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from src.deps import get_engine
from src.handlers.classifier import classify
from src.handlers.reconciliation import ReconciliationEngine
from src.schemas.events import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def _read_payload(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON; treating it as empty")
        return {}


@router.get("/webhooks/simpro")
@router.get("/webhooks/quotes")
async def webhook_info(request: Request) -> dict:
    return {
        "message": "Webhook endpoint is accessible",
        "method": "Use POST for actual webhooks",
        "url": request.url.path,
    }


@router.post("/webhooks/simpro", response_model=WebhookAck)
@router.post("/webhooks/quotes", response_model=WebhookAck)
async def simpro_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    engine: ReconciliationEngine = Depends(get_engine),
) -> WebhookAck:
    """Receive a Simpro job or quote webhook.

    Acknowledged at once; reconciliation runs as a background task after the
    response is sent, so Simpro's retry behaviour never depends on how long
    the ERP calls take. Duplicate deliveries are absorbed by the engine.
    """
    payload = await _read_payload(request)
    event = classify(payload)
    logger.info(
        "Webhook received: kind=%s job=%s quote=%s status=%s action=%s",
        event.kind.value, event.job_id, event.quote_id, event.status_id, event.raw_action,
    )
    background_tasks.add_task(engine.handle, event)
    return WebhookAck(kind=event.kind, timestamp=datetime.now(timezone.utc).isoformat())
