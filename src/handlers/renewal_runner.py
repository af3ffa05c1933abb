"""Daily maintenance-renewal reminder run.

Scans every job carrying the maintenance tag, derives its renewal schedule
from the completed date and, for each reminder that falls due today, makes
sure a reminder task exists. Reminder subjects embed the job number and the
T-n offset, so running twice on the same day creates nothing new.
"""

from __future__ import annotations

import logging
from datetime import date

from src.clients.errors import SimproError
from src.clients.simpro_client import SimproClient
from src.config import Settings, settings
from src.handlers.reconciliation import ClientFactory, ReconciliationEngine, ensure_task
from src.idempotency import IdempotencyStore
from src.scheduling import compute_renewal_schedule, utc_today
from src.schemas.renewals import ReminderCheck, RenewalAction, RunReport
from src.schemas.simpro import JobLinkInfo
from src.templates.task_templates import build_reminder_task_description, reminder_task_subject

logger = logging.getLogger(__name__)


def _is_completed(job: JobLinkInfo) -> bool:
    # Jobs listed without a status are given the benefit of the doubt.
    if not job.status_name:
        return True
    return "completed" in job.status_name.lower()


class RenewalRunner:
    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        deleted_jobs: IdempotencyStore | None = None,
        config: Settings | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._deleted_jobs = deleted_jobs
        self.settings = config or settings

    @classmethod
    def for_engine(cls, engine: ReconciliationEngine, client_factory: ClientFactory) -> "RenewalRunner":
        """A runner that shares the engine's deleted-job store and settings."""
        return cls(client_factory, deleted_jobs=engine.deleted_jobs, config=engine.settings)

    async def run(
        self,
        *,
        tag_id: int | None = None,
        assignee_id: int | None = None,
        today: date | None = None,
        dry_run: bool = True,
        include_expiry: bool = False,
    ) -> RunReport:
        tag_id = tag_id if tag_id is not None else self.settings.maintenance_tag_id
        assignee_id = assignee_id if assignee_id is not None else self.settings.assignee_id
        today = today or utc_today()
        report = RunReport(today=today, dry_run=dry_run)

        async with self._client_factory() as simpro:
            jobs = await simpro.list_jobs_with_tag(tag_id)
            report.jobs_scanned = len(jobs)
            for job in jobs:
                if job.completed_date is None or not _is_completed(job):
                    continue
                if self._deleted_jobs is not None and await self._deleted_jobs.seen(job.job_id):
                    continue
                await self._run_job(simpro, job, report, assignee_id, include_expiry)

        logger.info(
            "Renewal runner complete. jobs=%d considered=%d actions=%d dry_run=%s",
            report.jobs_scanned, len(report.considered), len(report.actions), dry_run,
        )
        return report

    async def _run_job(
        self,
        simpro: SimproClient,
        job: JobLinkInfo,
        report: RunReport,
        assignee_id: int,
        include_expiry: bool,
    ) -> None:
        schedule = compute_renewal_schedule(job.completed_date, include_expiry=include_expiry)
        for reminder in schedule.reminders:
            report.considered.append(ReminderCheck(
                job_id=job.job_id,
                job_number=job.job_number,
                months_before=reminder.months_before,
                due_date=reminder.date,
                expiry=reminder.expiry,
            ))
            if reminder.date != report.today:
                continue

            action = RenewalAction(
                job_id=job.job_id,
                job_number=job.job_number,
                months_before=reminder.months_before,
                due_date=reminder.date,
                expiry=reminder.expiry,
                subject=reminder_task_subject(job, reminder.months_before),
            )
            report.actions.append(action)

            try:
                # Only jobs due today are re-checked, to keep the daily API load flat.
                if not await simpro.job_is_active(job.job_id):
                    action.skipped = "job_deleted_or_inactive"
                    continue
                if report.dry_run:
                    action.dry_run = True
                    continue

                task = await ensure_task(
                    simpro,
                    subject=action.subject,
                    description=build_reminder_task_description(
                        job, schedule, reminder.months_before, self.settings.maintenance_value,
                    ),
                    due_date=reminder.date,
                    assignee_id=assignee_id,
                    job_id=job.job_id,
                )
            except SimproError as exc:
                logger.error("Renewal reminder failed for job %s (T-%d): %s", job.job_id, reminder.months_before, exc.message)
                action.skipped = f"error: {exc.message}"[:200]
                continue
            action.created = task.created
            action.task_id = task.id
