"""Configuration for the Simpro maintenance automation service."""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./automation.db"
    api_prefix: str = "/api"
    debug: bool = False

    # Simpro ERP API
    simpro_base_url: str = ""
    simpro_api_key: str = ""
    simpro_company_id: str = "0"
    simpro_timeout: float = 30.0
    simpro_max_retries: int = 3
    simpro_retry_backoff: float = 0.6

    # Quote custom field that flags a maintenance contract
    trigger_field_id: str = "73"
    trigger_field_name: str = ""
    yes_value: str = "YES"

    # Maintenance contract automation
    assignee_id: int = 12
    maintenance_tag_id: int = 256
    maintenance_value: str = "TBC"

    # Quote review tasks fall back to assignee_id when no reviewer is set
    quote_review_assignee_id: int | None = None
    quote_review_assignee_name: str = "Quote reviewer"

    # In-process idempotency (memory resets on restart; sql persists in database_url)
    idempotency_backend: str = "memory"
    idempotency_capacity: int = 2000

    # Daily renewal runner
    renewal_schedule_enabled: bool = False
    renewal_schedule_hour: int = 6
    renewal_dry_run: bool = True
    renewal_include_expiry: bool = False

    model_config = {"env_prefix": "AUTOMATION_"}

    @field_validator("quote_review_assignee_id", mode="before")
    @classmethod
    def _blank_reviewer_is_unset(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator("idempotency_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in {"memory", "sql"}:
                raise ValueError("idempotency_backend must be 'memory' or 'sql'")
        return value

    @property
    def review_assignee_id(self) -> int:
        return self.quote_review_assignee_id or self.assignee_id


settings = Settings()
