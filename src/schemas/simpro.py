"""Canonical shapes for Simpro records, normalized by the gateway."""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field


class CustomField(BaseModel):
    id: str = ""
    name: str = ""
    value: str = ""


class JobLinkInfo(BaseModel):
    job_id: str
    job_number: str = ""
    quote_id: Optional[str] = None
    tag_ids: set[int] = Field(default_factory=set)
    completed_date: Optional[date] = None
    status_id: Optional[int] = None
    status_name: str = ""
    site_name: str = ""
    customer_name: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_number(self) -> str:
        return self.job_number or self.job_id


class QuoteAutomationView(BaseModel):
    quote_id: str
    quote_number: str = ""
    customer_name: str = ""
    custom_fields: list[CustomField] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class TaskSummary(BaseModel):
    id: Optional[str] = None
    subject: str = ""
    due_date: str = ""


class TaskRef(BaseModel):
    id: Optional[str] = None
    subject: str
    created: bool = True


class TagResult(BaseModel):
    job_id: str
    tag_id: int
    already_present: bool


class NoteResult(BaseModel):
    created: bool
    marker: str
