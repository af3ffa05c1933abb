"""Simpro ERP REST API client (Bearer token).

Normalizes Simpro's inconsistent field casing and envelope shapes into the
canonical models in ``src.schemas.simpro``. Endpoints and payload shapes that
vary between tenants are tried in order through ``try_in_order``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from itertools import product
from typing import Any
from urllib.parse import quote

import httpx

from src.clients.errors import SimproError
from src.clients.fallbacks import try_in_order
from src.config import settings
from src.scheduling import parse_date_only, to_date_string
from src.schemas.shapes import (
    as_id,
    as_int,
    first_present,
    first_text,
    normalize_custom_fields,
    normalize_list,
    tag_ids,
)
from src.schemas.simpro import (
    JobLinkInfo,
    NoteResult,
    QuoteAutomationView,
    TagResult,
    TaskRef,
    TaskSummary,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

_JOB_COLUMN_SETS = (
    "ID,JobNo,JobNumber,Quote,QuoteNo,QuoteID,Customer,Site,Status,DateModified,CompletedDate,DateCompleted,Tags",
    "ID,JobNo,Quote,Customer,Site,Status,CompletedDate,DateCompleted,Tags",
    None,
)
_JOB_LIST_COLUMNS = "ID,JobNo,Status,CompletedDate,DateCompleted,Tags,Customer,Site"

ID_PATHS = ("ID", "Id", "id")
JOB_NUMBER_PATHS = ("JobNo", "JobNumber", "ID", "Id", "id")
JOB_QUOTE_PATHS = (
    "Quote.ID", "Quote.Id", "Quote.id",
    "QuoteID", "QuoteId", "quoteId",
    "SourceQuote.ID", "SourceQuote.Id", "SourceQuote.id",
    "ConvertedFromQuote.ID", "ConvertedFromQuote.Id", "ConvertedFromQuote.id",
)
COMPLETED_DATE_PATHS = (
    "CompletedDate", "DateCompleted", "CompletionDate", "completedDate", "dateCompleted",
)
STATUS_ID_PATHS = ("Status.ID", "Status.Id", "Status.id", "StatusID", "StatusId")
STATUS_NAME_PATHS = ("Status.Name", "Status.name", "Status")
SITE_NAME_PATHS = ("Site.Name", "Site.name", "SiteName")
CUSTOMER_NAME_PATHS = ("Customer.CompanyName", "Customer.Name", "Customer.name", "CustomerName")
QUOTE_NUMBER_PATHS = ("QuoteNo", "QuoteNumber", "Number", "ID", "Id", "id")
EMBEDDED_FIELD_PATHS = ("CustomFields", "customFields", "Fields", "fields")
TASK_SUBJECT_PATHS = ("Subject", "subject", "Name", "name")
TASK_DUE_PATHS = ("DueDate", "dueDate")
NOTE_BODY_PATHS = ("Note", "note", "Notes", "notes", "Text", "text", "Description", "description")


def job_from_payload(job: dict, fallback_id: str = "") -> JobLinkInfo:
    quote_id = as_id(first_present(job, JOB_QUOTE_PATHS))
    if quote_id == "0":
        quote_id = None
    job_id = as_id(first_present(job, ID_PATHS)) or fallback_id
    return JobLinkInfo(
        job_id=job_id,
        job_number=as_id(first_present(job, JOB_NUMBER_PATHS)) or job_id,
        quote_id=quote_id,
        tag_ids=tag_ids(job.get("Tags", job.get("tags"))),
        completed_date=parse_date_only(first_present(job, COMPLETED_DATE_PATHS)),
        status_id=as_int(first_present(job, STATUS_ID_PATHS)),
        status_name=first_text(job, STATUS_NAME_PATHS),
        site_name=first_text(job, SITE_NAME_PATHS),
        customer_name=first_text(job, CUSTOMER_NAME_PATHS),
        raw=job,
    )


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text[:500]


def _tasks_matching(items: list, subject: str) -> list[TaskSummary]:
    tasks = []
    for item in items:
        if not isinstance(item, dict):
            continue
        task = TaskSummary(
            id=as_id(first_present(item, ID_PATHS)),
            subject=first_text(item, TASK_SUBJECT_PATHS),
            due_date=first_text(item, TASK_DUE_PATHS),
        )
        if subject in task.subject:
            tasks.append(task)
    return tasks


class SimproClient:
    """Narrow, stable gateway over the Simpro API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        company_id: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url if base_url is not None else settings.simpro_base_url).rstrip("/")
        if not self._base_url:
            raise RuntimeError("Simpro not configured: set AUTOMATION_SIMPRO_BASE_URL and AUTOMATION_SIMPRO_API_KEY")
        token = api_key if api_key is not None else settings.simpro_api_key
        company = company_id if company_id is not None else settings.simpro_company_id
        self._company = f"/companies/{quote(str(company))}"
        self._max_retries = max_retries if max_retries is not None else settings.simpro_max_retries
        self._retry_backoff = retry_backoff if retry_backoff is not None else settings.simpro_retry_backoff
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout if timeout is not None else settings.simpro_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SimproClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _path(self, *parts: object, trailing_slash: bool = False) -> str:
        path = "/".join([self._company, *(quote(str(p)) for p in parts)])
        return f"{path}/" if trailing_slash else path

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict | None = None,
        retries: int | None = None,
    ) -> httpx.Response:
        """Send one request with linear backoff on transient failures.

        Transport errors, timeouts, 408/429 and 5xx are retried. Any other
        non-2xx fails at once: for Simpro that means the endpoint or payload
        shape was rejected, and the caller should move to its next candidate.
        """
        attempts = max(1, retries if retries is not None else self._max_retries)
        error: SimproError | None = None
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.request(method, url, json=json, params=params)
            except httpx.HTTPError as exc:
                error = SimproError(f"{method} {url} failed: {exc}", url=url)
            else:
                if resp.is_success:
                    return resp
                error = SimproError(
                    f"{method} {url} returned {resp.status_code}",
                    status=resp.status_code,
                    body=_response_body(resp),
                    url=url,
                )
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise error
            logger.warning(
                "Simpro API error %s %s attempt %d/%d: %s",
                method, url, attempt, attempts, error.status or error.message,
            )
            if attempt >= attempts:
                raise error
            await asyncio.sleep(self._retry_backoff * attempt)
        raise SimproError(f"{method} {url} was never attempted", url=url)

    async def _json(self, method: str, url: str, *, json: Any = None, params: dict | None = None,
                    retries: int | None = None) -> Any:
        resp = await self._request(method, url, json=json, params=params, retries=retries)
        if not resp.content:
            return None
        return _response_body(resp)

    async def _get_json(self, url: str, params: dict | None = None) -> Any:
        return await self._json("GET", url, params=params)

    # Jobs

    async def get_job(self, job_id: str | int) -> JobLinkInfo:
        url = self._path("jobs", job_id)
        result = await try_in_order(
            _JOB_COLUMN_SETS,
            lambda columns: self._get_json(url, params={"columns": columns} if columns else None),
        )
        raw = result.unwrap()
        if not isinstance(raw, dict):
            raise SimproError(f"Unexpected job payload for job {job_id}", body=raw, url=url)
        return job_from_payload(raw, fallback_id=str(job_id))

    async def job_is_active(self, job_id: str | int) -> bool:
        """False when the job is gone (404/410) or carries a deleted/cancelled/void status."""
        try:
            job = await self.get_job(job_id)
        except SimproError as exc:
            if exc.status in (404, 410):
                return False
            raise
        status_name = job.status_name.lower()
        return not any(word in status_name for word in ("deleted", "cancel", "void"))

    async def list_jobs_with_tag(self, tag_id: int, page_size: int = 250, max_pages: int = 20) -> list[JobLinkInfo]:
        url = self._path("jobs", trailing_slash=True)
        jobs: list[JobLinkInfo] = []
        for page in range(1, max_pages + 1):
            data = await self._get_json(url, params={
                "Tags.ID": tag_id,
                "pageSize": page_size,
                "page": page,
                "columns": _JOB_LIST_COLUMNS,
            })
            items = [item for item in normalize_list(data) if isinstance(item, dict)]
            if not items:
                break
            for item in items:
                job = job_from_payload(item)
                # Tenants that ignore the Tags.ID filter still return the tag column.
                if not job.job_id or (job.tag_ids and tag_id not in job.tag_ids):
                    continue
                jobs.append(job)
            if len(items) < page_size:
                break
        logger.info("Listed %d jobs carrying tag %s", len(jobs), tag_id)
        return jobs

    async def ensure_job_tag(self, job_id: str | int, tag_id: int) -> TagResult:
        job = await self.get_job(job_id)
        if tag_id in job.tag_ids:
            return TagResult(job_id=str(job_id), tag_id=tag_id, already_present=True)

        all_tags = sorted(job.tag_ids | {tag_id})
        candidates = (
            ("POST", self._path("jobs", job_id, "tags", trailing_slash=True), {"ID": tag_id}),
            ("POST", self._path("jobs", job_id, "tags"), {"ID": tag_id}),
            ("PATCH", self._path("jobs", job_id), {"Tags": all_tags}),
        )
        result = await try_in_order(
            candidates,
            lambda c: self._request(c[0], c[1], json=c[2], retries=2),
        )
        result.unwrap()
        logger.info("Tag %s attached to job %s via %s %s", tag_id, job_id, result.candidate[0], result.candidate[1])
        return TagResult(job_id=str(job_id), tag_id=tag_id, already_present=False)

    # Quotes

    async def get_quote(self, quote_id: str | int) -> QuoteAutomationView:
        header = await try_in_order(
            (self._path("quotes", quote_id), self._path("quotes", quote_id, trailing_slash=True)),
            self._get_json,
        )
        quote_body = header.value if header.succeeded and isinstance(header.value, dict) else {}
        if not header.succeeded:
            logger.warning("Could not fetch quote %s header: %s", quote_id, header.last_error)

        fields_result = await try_in_order(
            (
                self._path("quotes", quote_id, "customFields", trailing_slash=True),
                self._path("quotes", quote_id, "customFields"),
                self._path("quotes", quote_id, "customfields", trailing_slash=True),
                self._path("quotes", quote_id, "customfields"),
            ),
            self._get_json,
        )
        custom_fields = normalize_custom_fields(fields_result.value) if fields_result.succeeded else []
        if not custom_fields:
            custom_fields = normalize_custom_fields(first_present(quote_body, EMBEDDED_FIELD_PATHS))
        if not custom_fields and not fields_result.succeeded:
            if not header.succeeded:
                fields_result.unwrap()
            logger.warning("Could not fetch quote custom fields for %s: %s", quote_id, fields_result.last_error)

        return QuoteAutomationView(
            quote_id=str(quote_id),
            quote_number=as_id(first_present(quote_body, QUOTE_NUMBER_PATHS)) or str(quote_id),
            customer_name=first_text(quote_body, CUSTOMER_NAME_PATHS),
            custom_fields=custom_fields,
            raw=quote_body,
        )

    # Tasks

    async def create_task(
        self,
        subject: str,
        description: str,
        due_date: date | str,
        assignee_id: int,
        job_id: str | int | None = None,
        quote_id: str | int | None = None,
    ) -> TaskRef:
        due = to_date_string(due_date) if isinstance(due_date, date) else str(due_date)
        endpoints = [self._path("tasks", trailing_slash=True)]
        if quote_id is not None:
            endpoints.append(self._path("quotes", quote_id, "tasks", trailing_slash=True))

        payloads = [
            {"Subject": subject, "Description": description, "DueDate": due, "AssignedTo": assignee_id},
            {"Subject": subject, "Description": description, "DueDate": due, "Staff": {"ID": assignee_id}},
            {"Name": subject, "Notes": description, "DueDate": due, "AssignedTo": assignee_id},
            {"Subject": subject, "Notes": description, "DueDate": due, "Assignees": [assignee_id]},
        ]
        if job_id is not None and str(job_id).strip():
            job_ref = as_int(job_id)
            for payload in payloads:
                payload["Associated"] = {"Job": {"ID": job_ref if job_ref is not None else str(job_id)}}

        result = await try_in_order(
            list(product(endpoints, payloads)),
            lambda c: self._json("POST", c[0], json=c[1], retries=2),
        )
        for (endpoint, _payload), exc in result.failures:
            logger.warning("Task create rejected via %s (%s): %s", endpoint, exc.status, str(exc.body)[:300])
        data = result.unwrap()
        task_id = as_id(first_present(data, ID_PATHS)) if isinstance(data, dict) else None
        logger.info("Created task %r (id=%s) via %s", subject, task_id, result.candidate[0])
        return TaskRef(id=task_id, subject=subject, created=True)

    async def find_tasks_by_subject(self, subject: str) -> list[TaskSummary]:
        """Tasks whose subject contains ``subject``.

        A shape that answers with tasks but none matching is treated as having
        ignored the filter, and the next shape is tried. Raises when no shape
        is accepted at all, so callers never mistake a failed lookup for "no
        such task".
        """
        url = self._path("tasks", trailing_slash=True)
        candidates = (
            ("SEARCH", url, None, {"SearchTerm": subject}),
            ("SEARCH", url, None, {"searchTerm": subject}),
            ("GET", url, {"Subject": f"%{subject}%", "columns": "ID,Subject,DueDate"}, None),
            ("SEARCH", url, None, {}),
        )
        answered = False

        async def attempt(candidate) -> list[TaskSummary]:
            nonlocal answered
            method, target, params, body = candidate
            items = normalize_list(await self._json(method, target, params=params, json=body, retries=2))
            answered = True
            tasks = _tasks_matching(items, subject)
            if items and not tasks:
                raise SimproError(f"{method} {target} ignored the subject filter", url=target)
            return tasks

        result = await try_in_order(candidates, attempt)
        if not result.succeeded and answered:
            return []
        return result.unwrap()

    # Notes

    async def list_job_notes(self, job_id: str | int, search_term: str = "") -> list[str]:
        url = self._path("jobs", job_id, "notes", trailing_slash=True)
        candidates = [("GET", {"columns": "ID,Subject,Note"}, None)]
        if search_term:
            candidates.append(("SEARCH", None, {"SearchTerm": search_term}))
        candidates.append(("SEARCH", None, {}))
        result = await try_in_order(
            candidates,
            lambda c: self._json(c[0], url, params=c[1], json=c[2], retries=2),
        )
        return [
            first_text(item, NOTE_BODY_PATHS)
            for item in normalize_list(result.unwrap())
            if isinstance(item, dict)
        ]

    async def create_note(self, job_id: str | int, body: str) -> Any:
        text = body.strip()
        if not text:
            raise ValueError("Note text is empty")
        url = self._path("jobs", job_id, "notes", trailing_slash=True)
        result = await try_in_order(
            ({"Note": text}, {"Notes": text}, {"Text": text}),
            lambda payload: self._json("POST", url, json=payload, retries=2),
        )
        data = result.unwrap()
        logger.info("Note added to job %s", job_id)
        return data

    async def create_note_once(self, job_id: str | int, body: str, marker: str) -> NoteResult:
        marker = marker.strip()
        if not marker:
            raise ValueError("marker is required for create_note_once")
        existing = await self.list_job_notes(job_id, search_term=marker)
        if any(marker in note for note in existing):
            logger.info("Note %s already present on job %s", marker, job_id)
            return NoteResult(created=False, marker=marker)
        await self.create_note(job_id, f"{body}\n\nAutomation Key: {marker}")
        return NoteResult(created=True, marker=marker)
