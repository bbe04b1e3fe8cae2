"""
Tenant-owned business records written by the analysis pipelines.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    SmallInteger,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.database import Base

TENANT_CHECK = "(user_id IS NULL) <> (session_id IS NULL)"


class TenantOwnedMixin:
    """Ownership columns shared by every tenant-scoped table.

    ``tenant_key`` is the derived ``user:<id>`` / ``session:<id>`` value and is
    what queries filter on; the raw ids are kept for adoption and reporting.
    """

    user_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Owning user"
    )
    session_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Owning anonymous session"
    )
    tenant_key: Mapped[str] = mapped_column(
        Text, nullable=False, comment="user:<id> or session:<id>"
    )


def utcnow() -> datetime:
    return datetime.now(UTC)


class Organization(TenantOwnedMixin, Base):
    """The tenant's website analysis record. One per tenant."""

    __tablename__ = "tenant_organizations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    website_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    analysis: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Structured analysis"
    )

    narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
    narrative_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    key_insights: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    narrative_generated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(TENANT_CHECK, name="tenant_organizations_owner_check"),
        Index("ix_tenant_organizations_tenant_key_unique", "tenant_key", unique=True),
    )


class Audience(TenantOwnedMixin, Base):
    """A generated audience scenario attached to an organization."""

    __tablename__ = "tenant_audiences"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tenant_organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    segment: Mapped[str] = mapped_column(Text, nullable=False)
    pitch: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    scenario: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Full scenario payload"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(TENANT_CHECK, name="tenant_audiences_owner_check"),
        Index("ix_tenant_audiences_tenant_key", "tenant_key"),
    )
