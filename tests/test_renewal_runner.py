"""Tests for the daily renewal runner and its scheduler hook."""

from datetime import date
from unittest.mock import AsyncMock, Mock, patch

from src.handlers.renewal_runner import RenewalRunner
from src.schemas.renewals import RunReport

T2_SUBJECT = "Maintenance Contract Renewal – Action Required Soon - Job #123"
T2_DAY = date(2026, 1, 15)


def _seed(fake_simpro, **overrides):
    job = {"tags": [256], "completed": "2025-03-15", "site": "Harbour Office"}
    job.update(overrides)
    return fake_simpro.add_job(123, **job)


async def test_dry_run_reports_without_creating(fake_simpro, renewal_runner):
    _seed(fake_simpro)

    report = await renewal_runner.run(today=T2_DAY, dry_run=True)

    assert report.jobs_scanned == 1
    assert [c.due_date for c in report.considered] == [
        date(2025, 12, 15), date(2026, 1, 15), date(2026, 2, 15),
    ]
    assert len(report.actions) == 1
    action = report.actions[0]
    assert action.months_before == 2
    assert action.dry_run is True
    assert action.created is False
    assert action.subject == T2_SUBJECT
    assert fake_simpro.tasks == []
    assert fake_simpro.mutations == []


async def test_live_run_creates_reminder_once(fake_simpro, renewal_runner):
    _seed(fake_simpro)

    first = await renewal_runner.run(today=T2_DAY, dry_run=False)
    second = await renewal_runner.run(today=T2_DAY, dry_run=False)

    assert first.actions[0].created is True
    assert first.actions[0].task_id is not None
    assert second.actions[0].created is False
    assert second.actions[0].task_id == first.actions[0].task_id
    tasks = fake_simpro.tasks_with_subject(T2_SUBJECT)
    assert len(tasks) == 1
    assert tasks[0]["DueDate"] == "2026-01-15"
    assert tasks[0]["AssignedTo"] == 12
    assert "Harbour Office" in tasks[0]["Description"]
    assert "Reminder schedule: T-2 months" in tasks[0]["Description"]


async def test_nothing_due_today(fake_simpro, renewal_runner):
    _seed(fake_simpro)

    report = await renewal_runner.run(today=date(2026, 1, 14), dry_run=False)

    assert len(report.considered) == 3
    assert report.actions == []
    assert fake_simpro.mutations == []


async def test_expiry_reminder_when_enabled(fake_simpro, renewal_runner):
    _seed(fake_simpro)

    without = await renewal_runner.run(today=date(2026, 3, 15), dry_run=False)
    with_expiry = await renewal_runner.run(today=date(2026, 3, 15), dry_run=False, include_expiry=True)

    assert without.actions == []
    assert len(with_expiry.actions) == 1
    action = with_expiry.actions[0]
    assert action.expiry is True
    assert action.months_before == 0
    assert action.subject.startswith("Maintenance Contract Expired")
    assert action.created is True


async def test_inactive_job_is_skipped(fake_simpro, renewal_runner):
    _seed(fake_simpro)
    fake_simpro.gone.add("123")

    report = await renewal_runner.run(today=T2_DAY, dry_run=False)

    assert report.actions[0].skipped == "job_deleted_or_inactive"
    assert report.actions[0].created is False
    assert fake_simpro.tasks == []


async def test_jobs_deleted_by_webhook_are_ignored(fake_simpro, reconciler, renewal_runner):
    _seed(fake_simpro)
    await reconciler.deleted_jobs.mark_seen("123")

    report = await renewal_runner.run(today=T2_DAY, dry_run=False)

    assert report.jobs_scanned == 1
    assert report.considered == []
    assert report.actions == []


async def test_incomplete_and_undated_jobs_are_ignored(fake_simpro, renewal_runner):
    _seed(fake_simpro, status="In Progress")
    fake_simpro.add_job(124, tags=[256])
    fake_simpro.add_job(125, tags=[256], completed="2025-03-15", status="Incomplete")

    report = await renewal_runner.run(today=T2_DAY, dry_run=False)

    assert report.jobs_scanned == 3
    assert report.considered == []
    assert fake_simpro.tasks == []


async def test_one_failing_job_does_not_stop_the_run(fake_simpro, renewal_runner):
    _seed(fake_simpro)
    fake_simpro.add_job(124, tags=[256], completed="2025-03-15")
    fake_simpro.broken.add("123")

    report = await renewal_runner.run(today=T2_DAY, dry_run=False)

    failed, created = report.actions
    assert failed.job_id == "123"
    assert failed.skipped.startswith("error:")
    assert failed.created is False
    assert created.job_id == "124"
    assert created.created is True
    assert fake_simpro.tasks_with_subject(T2_SUBJECT) == []
    assert len(fake_simpro.tasks) == 1


async def test_tag_and_assignee_overrides(fake_simpro, automation_settings):
    fake_simpro.add_job(123, tags=[9], completed="2025-03-15")
    runner = RenewalRunner(fake_simpro.client, config=automation_settings)

    report = await runner.run(tag_id=9, assignee_id=55, today=T2_DAY, dry_run=False)

    assert report.actions[0].created is True
    assert fake_simpro.tasks[0]["AssignedTo"] == 55


async def test_scheduled_run_uses_configured_mode():
    mock_runner = Mock()
    mock_runner.run = AsyncMock(return_value=RunReport(today=T2_DAY, dry_run=True))

    with (
        patch("src.scheduler.get_engine"),
        patch("src.scheduler.RenewalRunner.for_engine", return_value=mock_runner),
    ):
        from src.scheduler import run_daily_renewals
        await run_daily_renewals()

    mock_runner.run.assert_awaited_once_with(dry_run=True, include_expiry=False)


async def test_scheduled_run_logs_failures():
    mock_runner = Mock()
    mock_runner.run = AsyncMock(side_effect=RuntimeError("Simpro not configured"))

    with (
        patch("src.scheduler.get_engine"),
        patch("src.scheduler.RenewalRunner.for_engine", return_value=mock_runner),
    ):
        from src.scheduler import run_daily_renewals
        await run_daily_renewals()

    mock_runner.run.assert_awaited_once()


async def test_scheduler_registers_daily_job():
    import src.scheduler as scheduler

    scheduler.start_scheduler()
    try:
        job = scheduler._scheduler.get_job("daily_renewal_runner")
        assert job is not None
        assert job.func is scheduler.run_daily_renewals
    finally:
        scheduler.stop_scheduler()

    assert scheduler._scheduler is None
