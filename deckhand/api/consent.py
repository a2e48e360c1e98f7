"""
Consent API.

GET  /v1/consent  Current consent status
POST /v1/consent  Record choices; the first completion applies the
                    AI-processing choice to waiting onboarding sessions
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_provider_dep, get_user, http_error
from ..core.errors import DeckhandError
from ..services import consent
from ..services.handoff import handoff_writer
from ..services.provider import AIProvider

logger = logging.getLogger(__name__)

consent_router = APIRouter(prefix="/consent", tags=["consent"])


class ConsentStatusResponse(BaseModel):
    mandatory_complete: bool
    ai_consent: bool
    privacy_accepted_at: Optional[datetime] = None
    terms_accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ConsentRequest(BaseModel):
    privacy_policy: Optional[bool] = None
    terms: Optional[bool] = None
    ai_processing: Optional[bool] = None


class ConsentResponse(ConsentStatusResponse):
    first_completion: bool = False
    redirect: Optional[str] = None
    reply: Optional[str] = None
    session_id: Optional[str] = None


@consent_router.get("", response_model=ConsentStatusResponse)
async def get_consent(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    current = await consent.status(db, user.user_id)
    return ConsentStatusResponse(**current.__dict__)


@consent_router.post("", response_model=ConsentResponse)
async def record_consent(
    request: ConsentRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    provider: AIProvider = Depends(get_provider_dep),
):
    try:
        async with handoff_writer(user.user_id):
            _, first_completion = await consent.record(
                db, user.user_id,
                privacy=request.privacy_policy,
                terms=request.terms,
                ai_consent=request.ai_processing,
            )
            outcome = None
            if first_completion:
                current = await consent.status(db, user.user_id)
                outcome = await consent.after_consent(db, user.user_id, current.ai_consent, provider)
    except DeckhandError as e:
        raise http_error(e)

    current = await consent.status(db, user.user_id)
    return ConsentResponse(
        **current.__dict__,
        first_completion=first_completion,
        redirect=outcome.redirect.url if outcome else None,
        reply=outcome.reply if outcome else None,
        session_id=outcome.session_id if outcome else None,
    )
