"""
services/registration/router.py
Public agent (DMC) registration endpoint.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.registration.workflow import register_agent
from shared.outbox import Outbox
from shared.schemas.schemas import AgentRegistrationRequest, AgentRegistrationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agent Registration"])


@router.post(
    "/register",
    response_model=AgentRegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new agent account",
)
async def register(
    data: AgentRegistrationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Creates the login identity, user, and a PENDING agent profile in one
    transaction, then notifies every super-admin.
    Malformed input is rejected with 422 before the database is touched;
    an email that is already registered returns 409.
    """
    outbox = Outbox.for_request(request)
    result = await register_agent(db, data, outbox)
    await outbox.flush(db)
    await db.commit()
    outbox.publish()

    return AgentRegistrationResponse(
        user_id=result.user.id,
        agent_id=result.agent.id,
        status=result.agent.status.value,
        notified_admins=result.notified_admins,
    )
