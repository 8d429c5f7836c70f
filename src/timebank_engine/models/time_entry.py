"""Ledger of time entries pulled from the provider."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from timebank_engine.models.base import Base, TenantScopedMixin, TimestampMixin

SOURCE_CLOCKIFY = "clockify"


class TimeEntry(Base, TenantScopedMixin, TimestampMixin):
    """Canonical time-tracking record.

    ``(tenant_id, source, external_entry_id)`` is unique, which is what makes
    repeated syncs idempotent: a second sync of the same provider entry
    updates the row in place.
    """

    __tablename__ = "time_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("employee.id", ondelete="SET NULL"),
        nullable=True,
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False, default=SOURCE_CLOCKIFY)
    external_entry_id: Mapped[str] = mapped_column(String(128), nullable=False)
    external_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    task_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tag_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "source",
            "external_entry_id",
            name="time_entry_tenant_source_external_unique",
        ),
        Index("ix_time_entry_tenant_start", "tenant_id", "start_at"),
        Index("ix_time_entry_tenant_employee_start", "tenant_id", "employee_id", "start_at"),
    )
