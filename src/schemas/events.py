"""Pydantic models for webhook events and their processing results."""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    JOB_STATUS_CHANGED = "job_status_changed"
    JOB_DELETED = "job_deleted"
    QUOTE_CHANGED = "quote_changed"
    UNKNOWN = "unknown"


class WebhookEvent(BaseModel):
    """Canonical view of one inbound Simpro webhook delivery."""

    kind: EventKind = EventKind.UNKNOWN
    job_id: Optional[str] = None
    quote_id: Optional[str] = None
    status_id: Optional[int] = None
    raw_action: Optional[str] = None
    event_name: str = ""
    webhook_id: str = ""
    timestamp: str = ""

    @property
    def entity_id(self) -> str:
        if self.kind == EventKind.QUOTE_CHANGED:
            return self.quote_id or ""
        return self.job_id or self.quote_id or ""

    @property
    def has_delivery_id(self) -> bool:
        return bool(self.webhook_id or self.timestamp)

    @property
    def idempotency_key(self) -> str:
        status = str(self.status_id) if self.status_id is not None else ""
        # A status id alone does not identify a delivery.
        disambiguator = self.webhook_id or self.timestamp or status or "na"
        return f"{self.kind.value}:{self.entity_id}:{disambiguator}"

    @property
    def is_job_typed(self) -> bool:
        return not self.event_name or self.event_name.startswith(("job", "project"))


class WebhookAck(BaseModel):
    received: bool = True
    kind: EventKind
    message: str = "Webhook received and processing"
    timestamp: str


class ReconcileOutcome(BaseModel):
    """What the engine did with one event (logged, or returned by admin routes)."""

    status: str = "processed"
    kind: EventKind = EventKind.UNKNOWN
    actions: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ForceTaskRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=250)
    description: str = ""
    due_date: Optional[date] = None
    assignee_id: Optional[int] = None
    job_id: Optional[str] = None


class ForceTaskResponse(BaseModel):
    status: str
    task_id: Optional[str] = None
    subject: str


class TriggerPreview(BaseModel):
    quote_id: str
    match: bool
    trigger_field_id: str = ""
    trigger_field_name: str = ""
    custom_fields: list[dict] = Field(default_factory=list)
