"""Persisted idempotency keys for the SQL-backed store."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from src.database import Base


class ProcessedKey(Base):
    __tablename__ = "processed_keys"
    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_processed_keys_namespace_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
