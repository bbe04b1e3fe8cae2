"""
SQLAlchemy-backed storage for tenant analysis records and audiences.

All writes are idempotent per tenant: the analysis record is upserted by
tenant key and audiences are replaced wholesale per organization.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.v1.analysis.schemas import (
    Narrative,
    Scenario,
    StructuredAnalysis,
    TenantRecord,
)
from api.v1.core.exceptions import PersistenceError
from api.v1.core.security import TenantContext
from api.v1.tenants.models import Audience, Organization

logger = logging.getLogger(__name__)


class SqlTenantRecordStore:
    """TenantRecordStore implementation over the tenant tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _get_organization(
        self, session: AsyncSession, tenant: TenantContext
    ) -> Organization | None:
        result = await session.execute(
            select(Organization).where(Organization.tenant_key == tenant.key)
        )
        return result.scalar_one_or_none()

    async def upsert_tenant_record(
        self, tenant: TenantContext, url: str, analysis: StructuredAnalysis
    ) -> UUID:
        values = {
            "website_url": url,
            "business_name": analysis.business_name,
            "business_type": analysis.business_type,
            "analysis": analysis.model_dump(mode="json"),
            "updated_at": datetime.now(UTC),
        }
        try:
            try:
                return await self._upsert(tenant, values)
            except IntegrityError:
                # Concurrent insert for the same tenant; the second pass updates
                return await self._upsert(tenant, values)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save analysis record: {e}") from e

    async def _upsert(self, tenant: TenantContext, values: dict) -> UUID:
        async with self.session_factory() as session:
            organization = await self._get_organization(session, tenant)
            if organization is None:
                organization = Organization(**tenant.owner_columns(), **values)
                session.add(organization)
                created = True
            else:
                for key, value in values.items():
                    setattr(organization, key, value)
                created = False
            await session.commit()

            logger.info(
                "Tenant analysis record saved",
                extra={
                    "organization_id": str(organization.id),
                    "tenant": tenant.key,
                    "record_created": created,
                },
            )
            return organization.id

    async def get_tenant_record(self, tenant: TenantContext) -> TenantRecord | None:
        try:
            async with self.session_factory() as session:
                organization = await self._get_organization(session, tenant)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load analysis record: {e}") from e

        if organization is None or not organization.analysis:
            return None
        return TenantRecord(
            organization_id=organization.id,
            tenant_key=organization.tenant_key,
            website_url=organization.website_url,
            analysis=StructuredAnalysis.model_validate(organization.analysis),
            narrative=organization.narrative,
            updated_at=organization.updated_at,
        )

    async def list_audience_segments(self, tenant: TenantContext) -> list[str]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Audience.segment)
                    .where(Audience.tenant_key == tenant.key)
                    .order_by(Audience.priority)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load audiences: {e}") from e

    async def replace_audiences(
        self,
        tenant: TenantContext,
        organization_id: UUID,
        scenarios: list[Scenario],
    ) -> int:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(Audience).where(
                        and_(
                            Audience.organization_id == organization_id,
                            Audience.tenant_key == tenant.key,
                        )
                    )
                )
                session.add_all(
                    [
                        Audience(
                            **tenant.owner_columns(),
                            organization_id=organization_id,
                            segment=scenario.segment,
                            pitch=scenario.pitch,
                            image_url=scenario.image_url,
                            priority=scenario.priority,
                            scenario=scenario.model_dump(mode="json"),
                        )
                        for scenario in scenarios
                    ]
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save audiences: {e}") from e

        logger.info(
            "Audiences replaced",
            extra={
                "organization_id": str(organization_id),
                "tenant": tenant.key,
                "count": len(scenarios),
            },
        )
        return len(scenarios)

    async def save_narrative(self, tenant: TenantContext, narrative: Narrative) -> None:
        now = datetime.now(UTC)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(Organization)
                    .where(Organization.tenant_key == tenant.key)
                    .values(
                        narrative=narrative.narrative,
                        narrative_confidence=narrative.confidence,
                        key_insights=narrative.key_insights,
                        narrative_generated_at=now,
                        updated_at=now,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save narrative: {e}") from e

        if result.rowcount == 0:
            raise PersistenceError("No analysis record to attach the narrative to")
