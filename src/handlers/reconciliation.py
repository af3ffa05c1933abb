"""Reconciles Simpro webhook events into maintenance-contract side effects.

Per event, in order:

1. Drop everything for jobs already seen as deleted.
2. Job created/updated: if the job's source quote carries the maintenance
   trigger, tag the job and (when the tag is new) raise a conversion task and
   an audit note.
3. Job status 12 (Completed) on a tagged job: raise the completion-day task
   and a note with the renewal schedule.
4. Quote changed: if the trigger is set, raise a quote review task.

Idempotent at two levels: in-process key stores suppress redundant work, and
every mutation re-checks Simpro's own state first (tag presence, task
subject, note marker). Failures are logged and recorded on the outcome; they
never propagate, because the webhook sender was acknowledged before
processing started.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable

from src.clients.simpro_client import SimproClient
from src.config import Settings, settings
from src.idempotency import IdempotencyStore, build_store
from src.scheduling import compute_renewal_schedule, to_date_string, utc_today
from src.schemas.events import EventKind, ReconcileOutcome, TriggerPreview, WebhookEvent
from src.schemas.simpro import CustomField, QuoteAutomationView, TaskRef
from src.templates.task_templates import (
    build_completion_task_description,
    build_conversion_task_description,
    build_quote_review_description,
    build_schedule_audit_note,
    build_tag_audit_note,
    completion_note_marker,
    completion_task_subject,
    conversion_task_subject,
    quote_review_subject,
    tag_note_marker,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], SimproClient]

# Status 38 ("Completed & Checked") drives job-card generation elsewhere and
# is not handled here.
COMPLETED_STATUS_ID = 12

_TAG_ACTIONS = {"created", "updated"}


def quote_matches_trigger(
    fields: Iterable[CustomField],
    field_id: str = "",
    field_name: str = "",
    yes_value: str = "YES",
) -> bool:
    """True when a field matching the trigger id or name holds the yes value (case-insensitive)."""
    wanted_id = (field_id or "").strip()
    wanted_name = (field_name or "").strip().lower()
    yes = (yes_value or "YES").strip().lower()
    if not wanted_id and not wanted_name:
        return False
    for field in fields:
        matches_field = (wanted_id and field.id.strip() == wanted_id) or (
            wanted_name and field.name.strip().lower() == wanted_name
        )
        if matches_field and field.value.strip().lower() == yes:
            return True
    return False


async def ensure_task(
    simpro: SimproClient,
    *,
    subject: str,
    description: str,
    due_date: date,
    assignee_id: int,
    job_id: str | None = None,
    quote_id: str | None = None,
) -> TaskRef:
    """Create the task unless Simpro already holds one with this exact subject."""
    existing = await simpro.find_tasks_by_subject(subject)
    for task in existing:
        if task.subject.strip() == subject:
            logger.info("Task %r already exists (id=%s)", subject, task.id)
            return TaskRef(id=task.id, subject=subject, created=False)
    return await simpro.create_task(
        subject,
        description,
        due_date,
        assignee_id,
        job_id=job_id,
        quote_id=quote_id,
    )


class ReconciliationEngine:
    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        events: IdempotencyStore | None = None,
        completions: IdempotencyStore | None = None,
        deleted_jobs: IdempotencyStore | None = None,
        config: Settings | None = None,
    ) -> None:
        self._client_factory = client_factory
        self.events = events or build_store("webhook_events")
        self.completions = completions or build_store("completions")
        self.deleted_jobs = deleted_jobs or build_store("deleted_jobs")
        self.settings = config or settings

    @property
    def trigger_label(self) -> str:
        return self.settings.trigger_field_id or self.settings.trigger_field_name

    def matches_trigger(self, quote: QuoteAutomationView) -> bool:
        return quote_matches_trigger(
            quote.custom_fields,
            field_id=self.settings.trigger_field_id,
            field_name=self.settings.trigger_field_name,
            yes_value=self.settings.yes_value,
        )

    async def handle(self, event: WebhookEvent) -> ReconcileOutcome:
        outcome = ReconcileOutcome(kind=event.kind)
        claimed: list[tuple[IdempotencyStore, str]] = []
        try:
            if event.kind == EventKind.JOB_DELETED:
                await self._handle_job_deleted(event, outcome)
            elif event.kind == EventKind.JOB_STATUS_CHANGED:
                await self._handle_job_event(event, outcome, claimed)
            elif event.kind == EventKind.QUOTE_CHANGED:
                await self._handle_quote_changed(event, outcome, claimed)
            else:
                logger.info("Ignoring webhook that is neither a job nor a quote event")
                outcome.status = "skipped"
        except Exception as exc:
            logger.error("Reconciliation of %s failed: %s", event.idempotency_key, exc)
            outcome.status = "failed"
            outcome.errors.append(str(exc)[:500])
            # Let a later delivery of the same event retry the work.
            for store, key in claimed:
                await store.forget(key)
        else:
            logger.info(
                "Reconciled %s: status=%s actions=%s",
                event.idempotency_key, outcome.status, outcome.actions,
            )
        return outcome

    async def _handle_job_deleted(self, event: WebhookEvent, outcome: ReconcileOutcome) -> None:
        await self.deleted_jobs.mark_seen(event.job_id)
        outcome.actions.append("job_marked_deleted")
        logger.info("Job %s deleted; later events for it will be dropped", event.job_id)

    async def _handle_job_event(
        self,
        event: WebhookEvent,
        outcome: ReconcileOutcome,
        claimed: list[tuple[IdempotencyStore, str]],
    ) -> None:
        job_id = event.job_id
        if await self.deleted_jobs.seen(job_id):
            logger.info("Dropping event for deleted job %s", job_id)
            outcome.status = "skipped"
            return

        wants_tag = event.raw_action in _TAG_ACTIONS and event.is_job_typed
        wants_completion = event.status_id == COMPLETED_STATUS_ID
        if not (wants_tag or wants_completion):
            logger.info("Job %s event (status=%s, action=%s) needs no reconciliation",
                        job_id, event.status_id, event.raw_action)
            outcome.status = "skipped"
            return

        # Deliveries without an id or timestamp can't be told apart from a
        # later genuine change, so only identified deliveries are de-duplicated.
        if event.has_delivery_id:
            if not await self.events.claim(event.idempotency_key):
                logger.info("Duplicate webhook ignored: %s", event.idempotency_key)
                outcome.status = "duplicate"
                return
            claimed.append((self.events, event.idempotency_key))

        async with self._client_factory() as simpro:
            if wants_tag:
                await self.propagate_maintenance_tag(simpro, job_id, outcome)
            if wants_completion:
                await self.schedule_completion(simpro, job_id, outcome, claimed)

    async def propagate_maintenance_tag(
        self,
        simpro: SimproClient,
        job_id: str,
        outcome: ReconcileOutcome,
    ) -> None:
        tag_id = self.settings.maintenance_tag_id
        job = await simpro.get_job(job_id)
        if not job.quote_id:
            logger.info("Job %s has no linked quote; no maintenance tag check", job_id)
            outcome.actions.append("no_linked_quote")
            return

        quote = await simpro.get_quote(job.quote_id)
        if not self.matches_trigger(quote):
            logger.info("Quote %s for job %s is not flagged for maintenance", job.quote_id, job_id)
            outcome.actions.append("trigger_not_matched")
            return

        result = await simpro.ensure_job_tag(job_id, tag_id)
        if result.already_present:
            outcome.actions.append("tag_already_present")
            return
        job.tag_ids.add(tag_id)
        outcome.actions.append(f"tag_applied:{tag_id}")

        task = await ensure_task(
            simpro,
            subject=conversion_task_subject(job),
            description=build_conversion_task_description(job),
            due_date=utc_today(),
            assignee_id=self.settings.assignee_id,
            job_id=job.job_id,
        )
        outcome.actions.append("conversion_task_created" if task.created else "conversion_task_exists")

        note = await simpro.create_note_once(
            job_id,
            build_tag_audit_note(job, tag_id, self.trigger_label, self.settings.yes_value),
            tag_note_marker(job, tag_id),
        )
        outcome.actions.append("tag_note_created" if note.created else "tag_note_exists")

    async def schedule_completion(
        self,
        simpro: SimproClient,
        job_id: str,
        outcome: ReconcileOutcome,
        claimed: list[tuple[IdempotencyStore, str]],
    ) -> None:
        job = await simpro.get_job(job_id)
        if self.settings.maintenance_tag_id not in job.tag_ids:
            logger.info("Completed job %s is not under a maintenance contract", job_id)
            outcome.actions.append("not_maintenance_job")
            return
        if job.completed_date is None:
            logger.warning("Completed job %s has no completed date; cannot schedule renewal", job_id)
            outcome.actions.append("no_completed_date")
            return

        key = f"{job.job_id}:{to_date_string(job.completed_date)}:status{COMPLETED_STATUS_ID}"
        if not await self.completions.claim(key):
            logger.info("Completion for job %s already scheduled in this process (%s)", job_id, key)
            outcome.status = "duplicate"
            outcome.actions.append("completion_duplicate")
            return
        claimed.append((self.completions, key))

        schedule = compute_renewal_schedule(job.completed_date)
        task = await ensure_task(
            simpro,
            subject=completion_task_subject(job),
            description=build_completion_task_description(job, schedule, self.settings.maintenance_value),
            due_date=job.completed_date,
            assignee_id=self.settings.assignee_id,
            job_id=job.job_id,
        )
        outcome.actions.append("completion_task_created" if task.created else "completion_task_exists")

        # The note marker carries the completed date, so an earlier run that
        # created the task but failed on the note is finished here.
        note = await simpro.create_note_once(
            job_id,
            build_schedule_audit_note(job, schedule),
            completion_note_marker(job, schedule),
        )
        outcome.actions.append("schedule_note_created" if note.created else "schedule_note_exists")

    async def _handle_quote_changed(
        self,
        event: WebhookEvent,
        outcome: ReconcileOutcome,
        claimed: list[tuple[IdempotencyStore, str]],
    ) -> None:
        key = event.idempotency_key
        if not await self.events.claim(key):
            logger.info("Duplicate quote webhook ignored: %s", key)
            outcome.status = "duplicate"
            return
        claimed.append((self.events, key))

        async with self._client_factory() as simpro:
            quote = await simpro.get_quote(event.quote_id)
            matched = self.matches_trigger(quote)
            logger.info("Quote %s trigger match: %s", event.quote_id, "YES" if matched else "NO")
            if not matched:
                outcome.actions.append("trigger_not_matched")
                return

            tomorrow = (datetime.now(timezone.utc) + timedelta(hours=24)).date()
            task = await ensure_task(
                simpro,
                subject=quote_review_subject(quote),
                description=build_quote_review_description(
                    quote,
                    self.trigger_label,
                    self.settings.yes_value,
                    self.settings.quote_review_assignee_name,
                ),
                due_date=tomorrow,
                assignee_id=self.settings.review_assignee_id,
                quote_id=quote.quote_id,
            )
        outcome.actions.append("review_task_created" if task.created else "review_task_exists")

    async def preview_trigger(self, quote_id: str) -> TriggerPreview:
        async with self._client_factory() as simpro:
            quote = await simpro.get_quote(quote_id)
        return TriggerPreview(
            quote_id=quote.quote_id,
            match=self.matches_trigger(quote),
            trigger_field_id=self.settings.trigger_field_id,
            trigger_field_name=self.settings.trigger_field_name,
            custom_fields=[field.model_dump() for field in quote.custom_fields],
        )
