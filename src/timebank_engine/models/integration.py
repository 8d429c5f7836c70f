"""Provider connection and identity link models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from timebank_engine.models.base import Base, TenantScopedMixin, TimestampMixin


class ProviderConnection(Base, TimestampMixin):
    """Per-tenant credentials for the time-tracking provider.

    One row per tenant; overwritten on config upsert, never deleted.
    """

    __tablename__ = "provider_connection"

    tenant_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class IdentityLink(Base, TenantScopedMixin, TimestampMixin):
    """Mapping from a provider user to an internal employee."""

    __tablename__ = "identity_link"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    external_user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_id", name="identity_link_tenant_employee_unique"),
        UniqueConstraint(
            "tenant_id", "external_user_id", name="identity_link_tenant_external_user_unique"
        ),
    )
