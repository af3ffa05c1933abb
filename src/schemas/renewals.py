"""Renewal schedule values and renewal-runner reports."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class Reminder(BaseModel):
    months_before: int
    date: date
    expiry: bool = False


class RenewalSchedule(BaseModel):
    start_date: date
    renewal_due_date: date
    renewal_end_date: date
    reminders: list[Reminder] = Field(default_factory=list)


class ReminderCheck(BaseModel):
    job_id: str
    job_number: str = ""
    months_before: int
    due_date: date
    expiry: bool = False


class RenewalAction(BaseModel):
    job_id: str
    job_number: str = ""
    months_before: int
    due_date: date
    created: bool = False
    dry_run: bool = False
    expiry: bool = False
    subject: str = ""
    task_id: Optional[str] = None
    skipped: Optional[str] = None


class RunReport(BaseModel):
    today: date
    dry_run: bool
    jobs_scanned: int = 0
    considered: list[ReminderCheck] = Field(default_factory=list)
    actions: list[RenewalAction] = Field(default_factory=list)
