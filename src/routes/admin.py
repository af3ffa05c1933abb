"""Operator endpoints: trigger previews, manual reconciliation, renewal runs.

Unlike the webhook routes these run synchronously, so Simpro failures reach
the caller as an HTTP error carrying the upstream status and body.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from src.deps import get_client_factory, get_engine, get_manual_store, get_renewal_runner
from src.handlers.reconciliation import ClientFactory, ReconciliationEngine
from src.handlers.renewal_runner import RenewalRunner
from src.idempotency import IdempotencyStore
from src.scheduling import to_date_string, utc_today
from src.schemas.events import (
    EventKind,
    ForceTaskRequest,
    ForceTaskResponse,
    ReconcileOutcome,
    TriggerPreview,
    WebhookEvent,
)
from src.schemas.renewals import RunReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/quotes/{quote_id}/preview-trigger", response_model=TriggerPreview)
async def preview_trigger(
    quote_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> TriggerPreview:
    return await engine.preview_trigger(quote_id)


@router.post("/jobs/{job_id}/reconcile", response_model=ReconcileOutcome)
async def reconcile_job(
    job_id: str,
    response: Response,
    status_id: Optional[int] = None,
    action: Optional[str] = "updated",
    engine: ReconciliationEngine = Depends(get_engine),
) -> ReconcileOutcome:
    """Run the webhook reconciliation for one job as if Simpro had sent it."""
    event = WebhookEvent(
        kind=EventKind.JOB_STATUS_CHANGED,
        job_id=job_id,
        status_id=status_id,
        raw_action=(action or "").lower() or None,
    )
    outcome = await engine.handle(event)
    if outcome.status == "failed":
        response.status_code = status.HTTP_502_BAD_GATEWAY
    return outcome


@router.post("/tasks", response_model=ForceTaskResponse)
async def force_create_task(
    body: ForceTaskRequest,
    manual_store: IdempotencyStore = Depends(get_manual_store),
    client_factory: ClientFactory = Depends(get_client_factory),
    engine: ReconciliationEngine = Depends(get_engine),
) -> ForceTaskResponse:
    """Create a task directly, bypassing the trigger predicate.

    Repeat calls with the same subject and due date are ignored for the
    lifetime of the process.
    """
    due = body.due_date or utc_today()
    key = f"task:{body.subject}:{to_date_string(due)}"
    if not await manual_store.claim(key):
        logger.info("Manual task %r already created in this process", body.subject)
        return ForceTaskResponse(status="duplicate", subject=body.subject)
    try:
        async with client_factory() as simpro:
            task = await simpro.create_task(
                body.subject,
                body.description or body.subject,
                due,
                body.assignee_id or engine.settings.assignee_id,
                job_id=body.job_id,
            )
    except Exception:
        await manual_store.forget(key)
        raise
    return ForceTaskResponse(status="created", task_id=task.id, subject=task.subject)


@router.get("/renewals/status")
async def renewals_status() -> dict:
    return {
        "ok": True,
        "message": "Renewal runner endpoints available",
        "now": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/renewals/run", response_model=RunReport)
async def run_renewals(
    dry_run: bool = True,
    tag_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    today: Optional[date] = None,
    include_expiry: bool = False,
    runner: RenewalRunner = Depends(get_renewal_runner),
) -> RunReport:
    """Create the renewal reminders due today. Dry run unless ``dry_run=false``."""
    return await runner.run(
        tag_id=tag_id,
        assignee_id=assignee_id,
        today=today,
        dry_run=dry_run,
        include_expiry=include_expiry,
    )
