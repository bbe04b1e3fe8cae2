"""
Session adoption endpoint.

Called by the frontend right after sign-in so that work started anonymously
follows the user.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.infra.database import get_session_factory
from api.v1.core.exceptions import ValidationError, create_success_response
from api.v1.core.security import TenantContext, TenantDep
from api.v1.tenants.adoption import SessionAdoptionService
from api.v1.tenants.schemas import AdoptSessionRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/session", tags=["session"])


def get_adoption_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SessionAdoptionService:
    return SessionAdoptionService(session_factory)


@router.post("/adopt", response_model=dict)
async def adopt_session(
    request: AdoptSessionRequest,
    tenant: TenantContext = TenantDep,
    service: SessionAdoptionService = Depends(get_adoption_service),
) -> dict[str, Any]:
    """Move an anonymous session's jobs and analysis to the signed-in user."""

    if not tenant.is_user:
        raise ValidationError("Session adoption requires a signed-in user")

    summary = await service.adopt_session(request.session_id, tenant.user_id)

    logger.info(
        "Session adopted via API",
        extra={"user_id": tenant.user_id, "session_id": request.session_id},
    )

    return create_success_response(data=summary.model_dump(mode="json"))
