"""
Post-authentication hand-off and redirect decisions.

POST /v1/auth/complete  Link the anonymous session, apply consent, decide where to go
GET  /v1/redirect       Where the signed-in caller should be right now

/auth/complete is the only writer. /redirect waits for an in-flight hand-off
for the same user before it reads anything.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_provider_dep, get_user, http_error
from ..core.errors import DeckhandError
from ..routing.context import decide_for_user
from ..services import consent
from ..services.handoff import handoff_writer, wait_for_handoff
from ..services.provider import AIProvider
from ..services.sessions import SessionStore

logger = logging.getLogger(__name__)

auth_router = APIRouter(tags=["auth"])


class RedirectResponse(BaseModel):
    path: str
    url: str
    reason: str
    priority: int
    query_params: dict = {}
    linked_session_ids: list[str] = []
    reply: Optional[str] = None


class AuthCompleteRequest(BaseModel):
    anon_id: Optional[str] = None
    referral_source: Optional[str] = None


@auth_router.post("/auth/complete", response_model=RedirectResponse)
async def auth_complete(
    request: AuthCompleteRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    provider: AIProvider = Depends(get_provider_dep),
):
    """Runs once right after sign-in or sign-up."""
    linked = []
    reply = None
    try:
        async with handoff_writer(user.user_id):
            if request.anon_id:
                linked = await SessionStore(db).link_anonymous_session(
                    request.anon_id, user.user_id, email=user.email,
                )

            current = await consent.status(db, user.user_id)
            if linked and current.mandatory_complete:
                outcome = await consent.after_consent(db, user.user_id, current.ai_consent, provider)
                reply = outcome.reply
                if outcome.redirect.path == "/":
                    return RedirectResponse(
                        **outcome.redirect.to_dict(),
                        linked_session_ids=[s.id for s in linked],
                    )

            decision = await decide_for_user(
                db, user.user_id, request.referral_source, expect_session=bool(linked),
            )
    except DeckhandError as e:
        raise http_error(e)

    return RedirectResponse(
        **decision.to_dict(),
        linked_session_ids=[s.id for s in linked],
        reply=reply,
    )


@auth_router.get("/redirect", response_model=RedirectResponse)
async def redirect(
    referral_source: Optional[str] = Query(default=None),
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    await wait_for_handoff(user.user_id)
    decision = await decide_for_user(db, user.user_id, referral_source)
    return RedirectResponse(**decision.to_dict())
