"""Time-bank settings, adjustments and period closures."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from timebank_engine.models.base import Base, TenantScopedMixin, TimestampMixin

DEFAULT_TARGET_DAILY_MINUTES = 480
MAX_TARGET_DAILY_MINUTES = 960


class TimeBankSettings(Base):
    """Per-tenant singleton; a default applies when the row is absent."""

    __tablename__ = "time_bank_settings"

    tenant_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    target_daily_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_TARGET_DAILY_MINUTES
    )
    include_saturday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            f"target_daily_minutes BETWEEN 1 AND {MAX_TARGET_DAILY_MINUTES}",
            name="time_bank_settings_target_range",
        ),
    )


class TimeBankAdjustment(Base, TenantScopedMixin):
    """Signed correction to one employee's balance on one date."""

    __tablename__ = "time_bank_adjustment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    seconds_delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    review_note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="time_bank_adjustment_status_check",
        ),
        CheckConstraint("seconds_delta <> 0", name="time_bank_adjustment_nonzero"),
        Index("ix_time_bank_adjustment_tenant_date", "tenant_id", "effective_date"),
    )


class TimeBankClosure(Base, TenantScopedMixin, TimestampMixin):
    """Locked accounting period with frozen per-employee totals."""

    __tablename__ = "time_bank_closure"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="closed")
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "period_start", "period_end", name="time_bank_closure_period_unique"
        ),
        CheckConstraint("period_end >= period_start", name="time_bank_closure_range_check"),
        CheckConstraint(
            "status IN ('closed', 'reopened')", name="time_bank_closure_status_check"
        ),
        Index("ix_time_bank_closure_tenant_status", "tenant_id", "status"),
    )


class TimeBankClosureItem(Base, TenantScopedMixin):
    """Per-employee snapshot taken when a period is closed.

    Immutable once written; replaced wholesale when the same period is
    closed again.
    """

    __tablename__ = "time_bank_closure_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    closure_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("time_bank_closure.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    worked_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    expected_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    adjustment_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    balance_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("closure_id", "employee_id", name="time_bank_closure_item_unique"),
    )
