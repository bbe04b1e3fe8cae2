"""
Session adoption: re-key an anonymous session's work to a signed-in user.

Runs in a single transaction and is idempotent; a second run finds nothing
keyed by the session and changes nothing.
"""

from datetime import UTC, datetime

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config.logging import get_logger
from api.v1.core.security import TenantContext
from api.v1.infra.jobs.models import ACTIVE_STATUSES, Job, JobStatus
from api.v1.tenants.models import Audience, Organization
from api.v1.tenants.schemas import AdoptionSummary

logger = get_logger(__name__)

SUPERSEDED_MESSAGE = "Superseded by the user's active job of the same type"

# Fields copied onto the user's record when the session's analysis is newer
ORGANIZATION_FIELDS = (
    "website_url",
    "business_name",
    "business_type",
    "analysis",
    "narrative",
    "narrative_confidence",
    "key_insights",
    "narrative_generated_at",
    "updated_at",
)


class SessionAdoptionService:
    """Moves jobs, analysis records and audiences from a session to a user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def adopt_session(self, session_id: str, user_id: str) -> AdoptionSummary:
        source = TenantContext(session_id=session_id)
        target = TenantContext(user_id=user_id)
        summary = AdoptionSummary(session_id=session_id, user_id=user_id)

        async with self.session_factory() as session:
            async with session.begin():
                await self._adopt_jobs(session, source, target, summary)
                await self._adopt_organization(session, source, target, summary)

                # Anything still keyed by the session (e.g. orphaned audiences)
                result = await session.execute(
                    update(Audience)
                    .where(Audience.tenant_key == source.key)
                    .values(**target.owner_columns())
                )
                summary.audiences_moved += result.rowcount

        if summary.changed:
            logger.info("Session adopted", **summary.model_dump())
        else:
            logger.debug("Session adoption was a no-op", session_id=session_id)
        return summary

    async def _adopt_jobs(
        self,
        session: AsyncSession,
        source: TenantContext,
        target: TenantContext,
        summary: AdoptionSummary,
    ) -> None:
        active = [s.value for s in ACTIVE_STATUSES]
        user_active_types = set(
            (
                await session.execute(
                    select(Job.type).where(
                        and_(Job.tenant_key == target.key, Job.status.in_(active))
                    )
                )
            )
            .scalars()
            .all()
        )

        # Re-keying would put two active jobs of one type on the user
        if user_active_types:
            now = datetime.now(UTC)
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.tenant_key == source.key,
                        Job.status.in_(active),
                        Job.type.in_(user_active_types),
                    )
                )
                .values(
                    status=JobStatus.CANCELLED.value,
                    error_message=SUPERSEDED_MESSAGE,
                    completed_at=now,
                    updated_at=now,
                )
            )
            summary.jobs_superseded = result.rowcount

        result = await session.execute(
            update(Job)
            .where(Job.tenant_key == source.key)
            .values(**target.owner_columns())
        )
        summary.jobs_moved = result.rowcount

    async def _adopt_organization(
        self,
        session: AsyncSession,
        source: TenantContext,
        target: TenantContext,
        summary: AdoptionSummary,
    ) -> None:
        source_org = (
            await session.execute(
                select(Organization).where(Organization.tenant_key == source.key)
            )
        ).scalar_one_or_none()
        if source_org is None:
            return

        target_org = (
            await session.execute(
                select(Organization).where(Organization.tenant_key == target.key)
            )
        ).scalar_one_or_none()

        if target_org is None:
            await session.execute(
                update(Organization)
                .where(Organization.id == source_org.id)
                .values(**target.owner_columns())
            )
            result = await session.execute(
                update(Audience)
                .where(Audience.organization_id == source_org.id)
                .values(**target.owner_columns())
            )
            summary.organizations_moved = 1
            summary.audiences_moved += result.rowcount
            return

        # Both exist: the more recent analysis wins and keeps its audiences
        if source_org.updated_at > target_org.updated_at:
            for field in ORGANIZATION_FIELDS:
                setattr(target_org, field, getattr(source_org, field))
            discarded = await session.execute(
                delete(Audience).where(Audience.organization_id == target_org.id)
            )
            moved = await session.execute(
                update(Audience)
                .where(Audience.organization_id == source_org.id)
                .values(organization_id=target_org.id, **target.owner_columns())
            )
            summary.audiences_moved += moved.rowcount
        else:
            discarded = await session.execute(
                delete(Audience).where(Audience.organization_id == source_org.id)
            )
        summary.audiences_discarded += discarded.rowcount

        await session.delete(source_org)
        summary.organizations_merged = 1
