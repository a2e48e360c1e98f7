"""
Onboarding API.

POST /v1/onboarding/{role}/chat                One conversational turn
GET  /v1/onboarding/{role}/session             Session state and transcript
POST /v1/onboarding/{role}/session/link        Attach an anonymous session to the caller
POST /v1/onboarding/{role}/profile-completion  Resume AI-assisted profile completion

role is "owner" or "prospect". Chat works anonymously: the client keeps the
anon_id it gets back and sends it with every turn until it signs in.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_maybe_user, get_provider_dep, get_user, http_error
from ..core.errors import DeckhandError
from ..core.locks import session_lock
from ..orchestrator import prompts
from ..orchestrator.orchestrator import run_turn
from ..orchestrator.parsing import strip_tool_blocks
from ..orchestrator.state import Event, OnboardingState, Role, is_terminal, transition
from ..services import consent
from ..services.provider import AIProvider
from ..services.sessions import SessionStore
from ..tools.registry import Identity

logger = logging.getLogger(__name__)

onboarding_router = APIRouter(prefix="/onboarding", tags=["onboarding"])


def _create_lock_key(role: Role, user_id: Optional[str], anon_id: Optional[str]) -> str:
    # Two first messages from one caller must not open two sessions
    return f"create:{role.value}:{user_id or anon_id}"


# ── Chat ─────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str = Field(max_length=20000)
    anon_id: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    session_id: str
    anon_id: Optional[str] = None
    state: str
    created: dict = {}
    iterations: int = 0
    nudges: int = 0
    hit_max_iterations: bool = False
    fatal: bool = False


@onboarding_router.post("/{role}/chat", response_model=ChatResponse)
async def chat(
    role: Role,
    request: ChatRequest,
    user: Optional[AuthenticatedUser] = Depends(get_maybe_user),
    db: AsyncSession = Depends(get_db),
    provider: AIProvider = Depends(get_provider_dep),
):
    """One turn of the onboarding conversation."""
    user_id = user.user_id if user else None
    anon_id = request.anon_id or (None if user_id else str(uuid.uuid4()))
    identity = Identity(user_id=user_id, anon_id=anon_id, email=user.email if user else None)

    store = SessionStore(db)
    try:
        async with session_lock(_create_lock_key(role, user_id, anon_id)):
            session = await store.get_or_create(
                role, user_id=user_id, anon_id=anon_id, email=identity.email,
            )
        async with store.locked(session):
            if user_id and session.state == OnboardingState.CONSENT_PENDING.value:
                # Consent given earlier (e.g. for the other role) carries over
                current = await consent.status(db, user_id)
                if current.mandatory_complete and current.ai_consent:
                    session = await transition(store, session, Event.CONSENT_ACCEPTED)
            result = await run_turn(db, session, provider, identity, message=request.message)
    except DeckhandError as e:
        raise http_error(e)

    return ChatResponse(
        reply=result.reply,
        session_id=result.session_id,
        anon_id=anon_id,
        state=result.state,
        created=result.created,
        iterations=result.iterations,
        nudges=result.nudges,
        hit_max_iterations=result.hit_max_iterations,
        fatal=result.fatal,
    )


# ── Session ──────────────────────────────────────────────────────────

class TranscriptMessage(BaseModel):
    kind: str
    content: str


class SessionResponse(BaseModel):
    session_id: str
    role: str
    state: str
    linked: bool = False
    profile_completion_triggered: bool = False
    messages: list[TranscriptMessage] = []


@onboarding_router.get("/{role}/session", response_model=SessionResponse)
async def get_session(
    role: Role,
    anon_id: Optional[str] = Query(default=None),
    user: Optional[AuthenticatedUser] = Depends(get_maybe_user),
    db: AsyncSession = Depends(get_db),
):
    """Session state plus the user-visible part of the transcript."""
    store = SessionStore(db)
    session = await store.get(role, user_id=user.user_id if user else None, anon_id=anon_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No onboarding session")

    messages = []
    for turn in session.conversation or []:
        kind = turn.get("kind")
        if kind not in ("user", "assistant"):
            continue
        text = strip_tool_blocks(turn.get("content") or "")
        if text:
            messages.append(TranscriptMessage(kind=kind, content=text))

    return SessionResponse(
        session_id=session.id,
        role=session.role,
        state=session.state,
        linked=session.user_id is not None,
        profile_completion_triggered=session.profile_completion_triggered_at is not None,
        messages=messages,
    )


# ── Link ─────────────────────────────────────────────────────────────

class LinkRequest(BaseModel):
    anon_id: str


class LinkResponse(BaseModel):
    linked_session_ids: list[str] = []
    state: Optional[str] = None
    reply: Optional[str] = None
    redirect: Optional[str] = None


@onboarding_router.post("/{role}/session/link", response_model=LinkResponse)
async def link_session(
    role: Role,
    request: LinkRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    provider: AIProvider = Depends(get_provider_dep),
):
    """
    Attach the caller's anonymous session. If the caller already accepted the
    terms, the consent consequences are applied straight away.
    """
    store = SessionStore(db)
    try:
        # Linking and after_consent take each session's lock themselves
        linked = await store.link_anonymous_session(
            request.anon_id, user.user_id, email=user.email, role=role,
        )
        response = LinkResponse(linked_session_ids=[s.id for s in linked])
        if linked:
            response.state = linked[0].state

        current = await consent.status(db, user.user_id)
        if linked and current.mandatory_complete:
            outcome = await consent.after_consent(db, user.user_id, current.ai_consent, provider)
            response.reply = outcome.reply
            response.redirect = outcome.redirect.url
            session = await store.get(role, user_id=user.user_id)
            response.state = session.state if session else "deleted"
    except DeckhandError as e:
        raise http_error(e)

    return response


# ── Profile completion ───────────────────────────────────────────────

@onboarding_router.post("/{role}/profile-completion", response_model=ChatResponse)
async def trigger_profile_completion(
    role: Role,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    provider: AIProvider = Depends(get_provider_dep),
):
    """Resume AI-assisted profile completion for a signed-in user."""
    store = SessionStore(db)
    session = await store.get(role, user_id=user.user_id)
    if session is None or is_terminal(session.state):
        raise HTTPException(status_code=404, detail="No open onboarding session")
    try:
        async with store.locked(session):
            session = await store.mark_profile_completion_triggered(session)
            result = await run_turn(
                db, session, provider,
                Identity(user_id=user.user_id, email=user.email),
                directive=prompts.PROFILE_COMPLETION_DIRECTIVE,
            )
    except DeckhandError as e:
        raise http_error(e)

    return ChatResponse(
        reply=result.reply,
        session_id=result.session_id,
        state=result.state,
        created=result.created,
        iterations=result.iterations,
        nudges=result.nudges,
        hit_max_iterations=result.hit_max_iterations,
        fatal=result.fatal,
    )
