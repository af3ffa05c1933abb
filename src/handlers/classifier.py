"""Turn a raw Simpro webhook payload into a canonical ``WebhookEvent``.

Simpro sends job status events as
``{"ID": "job.status", "reference": {"jobID": 123, "statusID": 12}, ...}``,
but older subscriptions and manual tests use flatter shapes, so every field
is read through an ordered list of candidate paths. Classification is a pure
transform and never raises: anything unreadable becomes ``unknown``.
"""

from __future__ import annotations

import logging
from typing import Any

from src.schemas.events import EventKind, WebhookEvent
from src.schemas.shapes import as_id, as_int, first_present, first_text

logger = logging.getLogger(__name__)

JOB_ID_PATHS = (
    "reference.jobID", "reference.jobId", "reference.JobID",
    "Job.ID", "jobId", "JobId", "job.id",
)
QUOTE_ID_PATHS = (
    "reference.quoteID", "reference.quoteId", "reference.QuoteID",
    "Quote.ID", "quoteId", "quoteID", "quote.id",
)
STATUS_ID_PATHS = (
    "reference.statusID", "reference.statusId", "reference.StatusID",
    "Status.ID", "statusId", "StatusId", "status.id", "newStatus.ID",
)
EVENT_NAME_PATHS = ("ID", "id", "event", "Event", "type", "Type")
WEBHOOK_ID_PATHS = ("webhookId", "WebhookId", "webhookID", "deliveryId")
ACTION_PATHS = ("action", "Action")
TIMESTAMP_PATHS = ("date_triggered", "dateTriggered", "timestamp", "Timestamp", "updated", "Updated")

_ACTIONS = {"created", "updated", "deleted"}


def _event_name(payload: dict) -> str:
    for path in EVENT_NAME_PATHS:
        value = first_text(payload, (path,))
        if "." in value and not value.replace(".", "").isdigit():
            return value.lower()
    return ""


def _webhook_id(payload: dict) -> str:
    webhook_id = first_text(payload, WEBHOOK_ID_PATHS)
    if webhook_id:
        return webhook_id
    # A bare numeric "id" is a delivery id; a dotted one is the event name.
    raw = as_id(first_present(payload, ("id",)))
    if raw and "." not in raw:
        return raw
    return ""


def _raw_action(payload: dict, event_name: str) -> str | None:
    action = first_text(payload, ACTION_PATHS).lower()
    if action in _ACTIONS:
        return action
    suffix = event_name.rsplit(".", 1)[-1] if event_name else ""
    return suffix if suffix in _ACTIONS else None


def classify(payload: Any) -> WebhookEvent:
    if not isinstance(payload, dict):
        return WebhookEvent()
    try:
        event_name = _event_name(payload)
        job_id = as_id(first_present(payload, JOB_ID_PATHS))
        quote_id = as_id(first_present(payload, QUOTE_ID_PATHS))
        fields = dict(
            job_id=job_id,
            quote_id=quote_id,
            status_id=as_int(first_present(payload, STATUS_ID_PATHS)),
            raw_action=_raw_action(payload, event_name),
            event_name=event_name,
            webhook_id=_webhook_id(payload),
            timestamp=first_text(payload, TIMESTAMP_PATHS),
        )
        if fields["raw_action"] == "deleted" or "job.deleted" in event_name:
            kind = EventKind.JOB_DELETED if job_id else EventKind.UNKNOWN
        elif job_id:
            kind = EventKind.JOB_STATUS_CHANGED
        elif quote_id:
            kind = EventKind.QUOTE_CHANGED
        else:
            kind = EventKind.UNKNOWN
        return WebhookEvent(kind=kind, **fields)
    except Exception as exc:
        logger.warning("Unreadable webhook payload classified as unknown: %s", exc)
        return WebhookEvent()
