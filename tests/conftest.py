"""Fixtures: an in-memory fake of the Simpro API behind httpx.MockTransport."""

import json
from itertools import count

import httpx
import pytest

from src.clients.simpro_client import SimproClient
from src.config import Settings
from src.handlers.reconciliation import ReconciliationEngine
from src.handlers.renewal_runner import RenewalRunner
from src.idempotency import MemoryIdempotencyStore

BASE_URL = "https://simpro.test/api/v1.0"
COMPANY_PREFIX = "/api/v1.0/companies/0/"
MUTATING = {"POST", "PATCH", "PUT", "DELETE"}


class FakeSimpro:
    """Just enough of Simpro's REST surface for the automation paths."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict] = {}
        self.quotes: dict[str, dict] = {}
        self.custom_fields: dict[str, list] = {}
        self.tasks: list[dict] = []
        self.notes: dict[str, list[dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.mutations: list[tuple[str, str]] = []
        self.fail_next: list[int] = []
        self.reject_task_keys: set[str] = set()
        self.tag_post_enabled = True
        self.note_post_enabled = True
        self.search_page: int | None = None
        self.gone: set[str] = set()
        self.broken: set[str] = set()
        self._ids = count(1000)

    # Seeding

    def add_job(
        self,
        job_id,
        *,
        quote_id=None,
        tags=(),
        completed=None,
        status_id=12,
        status="Completed",
        job_no=None,
        site="Main Street Depot",
        customer="Acme Ltd",
    ) -> dict:
        job = {
            "ID": int(job_id),
            "JobNo": job_no or str(job_id),
            "Tags": [{"ID": tag, "Name": f"Tag {tag}"} for tag in tags],
            "Status": {"ID": status_id, "Name": status},
            "Site": {"ID": 1, "Name": site},
            "Customer": {"ID": 2, "CompanyName": customer},
        }
        if quote_id is not None:
            job["Quote"] = {"ID": int(quote_id)}
        if completed is not None:
            job["CompletedDate"] = completed
        self.jobs[str(job_id)] = job
        return job

    def add_quote(self, quote_id, fields, *, number=None, customer="Acme Ltd", embedded=False) -> dict:
        quote = {"ID": int(quote_id), "QuoteNo": number or str(quote_id), "Customer": {"CompanyName": customer}}
        if embedded:
            quote["CustomFields"] = fields
        else:
            self.custom_fields[str(quote_id)] = fields
        self.quotes[str(quote_id)] = quote
        return quote

    def job_tag_ids(self, job_id) -> set[int]:
        return {tag["ID"] for tag in self.jobs[str(job_id)]["Tags"]}

    def tasks_with_subject(self, subject: str) -> list[dict]:
        return [task for task in self.tasks if task["Subject"] == subject]

    # Client wiring

    def client(self) -> SimproClient:
        return SimproClient(
            base_url=BASE_URL,
            api_key="test-token",
            company_id="0",
            retry_backoff=0,
            transport=httpx.MockTransport(self.handler),
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.requests.append((method, path))
        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0), json={"errors": ["temporarily unavailable"]})
        if not path.startswith(COMPANY_PREFIX):
            return httpx.Response(404, json={"errors": ["unknown route"]})

        parts = [part for part in path[len(COMPANY_PREFIX):].split("/") if part]
        body = json.loads(request.content) if request.content else None
        response = self._dispatch(method, parts, body, request.url.params)
        if method in MUTATING and response.is_success:
            self.mutations.append((method, path))
        return response

    def _dispatch(self, method, parts, body, params) -> httpx.Response:
        not_found = httpx.Response(404, json={"errors": ["not found"]})
        if parts[:1] == ["jobs"]:
            return self._jobs(method, parts[1:], body, params) or not_found
        if parts[:1] == ["quotes"]:
            return self._quotes(method, parts[1:]) or not_found
        if parts == ["tasks"]:
            return self._tasks(method, body, params) or not_found
        return not_found

    def _jobs(self, method, rest, body, params):
        if not rest and method == "GET":
            tag = int(params.get("Tags.ID", 0))
            page = int(params.get("page", 1))
            size = int(params.get("pageSize", 250))
            matching = [job for job in self.jobs.values() if tag in {t["ID"] for t in job["Tags"]}]
            return httpx.Response(200, json=matching[(page - 1) * size: page * size])
        if not rest:
            return None
        job = self.jobs.get(rest[0])
        # Listings can lag behind deletions; single-job reads never do.
        if job is None or rest[0] in self.gone:
            return None
        if rest[0] in self.broken:
            return httpx.Response(500, json={"errors": ["internal error"]})
        if len(rest) == 1 and method == "GET":
            return httpx.Response(200, json=job)
        if len(rest) == 1 and method == "PATCH":
            job["Tags"] = [{"ID": tag} for tag in body["Tags"]]
            return httpx.Response(204)
        if rest[1:] == ["tags"] and method == "POST" and self.tag_post_enabled:
            job["Tags"].append({"ID": body["ID"]})
            return httpx.Response(201, json={"ID": body["ID"]})
        if rest[1:] == ["notes"]:
            notes = self.notes.setdefault(rest[0], [])
            if method == "GET":
                return httpx.Response(200, json=notes)
            if method == "POST" and self.note_post_enabled:
                if "Note" not in body:
                    return httpx.Response(422, json={"errors": ["Note is required"]})
                note = {"ID": next(self._ids), "Note": body["Note"]}
                notes.append(note)
                return httpx.Response(201, json=note)
        return None

    def _quotes(self, method, rest):
        if method != "GET" or not rest or rest[0] not in self.quotes:
            return None
        if len(rest) == 1:
            return httpx.Response(200, json=self.quotes[rest[0]])
        if rest[1:] == ["customFields"] and rest[0] in self.custom_fields:
            return httpx.Response(200, json=self.custom_fields[rest[0]])
        return None

    def _tasks(self, method, body, params):
        if method == "GET":
            needle = params.get("Subject", "").strip("%")
            return httpx.Response(200, json=[t for t in self.tasks if needle in t["Subject"]])
        if method == "SEARCH":
            if self.search_page is not None:
                return httpx.Response(200, json=self.tasks[: self.search_page])
            needle = (body or {}).get("SearchTerm", "")
            return httpx.Response(200, json=[t for t in self.tasks if needle in t["Subject"]])
        if method == "POST":
            rejected = self.reject_task_keys & set(body)
            if rejected:
                return httpx.Response(422, json={"errors": [f"unknown field {sorted(rejected)[0]}"]})
            task = {
                "ID": next(self._ids),
                "Subject": body.get("Subject") or body.get("Name"),
                "Description": body.get("Description") or body.get("Notes", ""),
                "DueDate": body["DueDate"],
                "AssignedTo": body.get("AssignedTo"),
                "Associated": body.get("Associated"),
            }
            self.tasks.append(task)
            return httpx.Response(201, json={"ID": task["ID"]})
        return None


@pytest.fixture
def fake_simpro() -> FakeSimpro:
    return FakeSimpro()


@pytest.fixture
def automation_settings() -> Settings:
    return Settings(
        trigger_field_id="73",
        trigger_field_name="",
        yes_value="YES",
        assignee_id=12,
        maintenance_tag_id=256,
        quote_review_assignee_id=34,
    )


@pytest.fixture
def reconciler(fake_simpro, automation_settings) -> ReconciliationEngine:
    return ReconciliationEngine(
        fake_simpro.client,
        events=MemoryIdempotencyStore(name="webhook_events"),
        completions=MemoryIdempotencyStore(name="completions"),
        deleted_jobs=MemoryIdempotencyStore(name="deleted_jobs"),
        config=automation_settings,
    )


@pytest.fixture
def renewal_runner(fake_simpro, reconciler) -> RenewalRunner:
    return RenewalRunner.for_engine(reconciler, fake_simpro.client)
