"""
Onboarding session store.

Every write goes through put(), which commits before returning. Callers can
read right after a put() and see what they wrote.

At most one non-terminal session exists per (role, user). create() and
link_anonymous_session() enforce it.

Anything that rewrites a session's transcript or state runs inside
locked(session), which holds the per-session lock and reloads the row.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from ..core.config import get_settings
from ..core.errors import DeckhandError
from ..core.locks import session_lock
from ..models.onboarding import OnboardingSession
from ..orchestrator.state import (
    Event,
    INITIAL_STATE,
    OnboardingState,
    Role,
    TERMINAL_STATES,
    transition,
)
from ..orchestrator.transcript import Transcript
from . import realtime

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATES]


class SessionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Reads ────────────────────────────────────────────────────────

    async def get(
        self,
        role,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
    ) -> Optional[OnboardingSession]:
        """
        The session for a role. A user's session wins over an anonymous one;
        among a user's sessions the non-terminal one wins, then the newest.
        """
        role = Role(role).value
        if user_id:
            result = await self.db.execute(
                select(OnboardingSession)
                .where(OnboardingSession.role == role, OnboardingSession.user_id == user_id)
                .order_by(OnboardingSession.created_at.desc())
            )
            sessions = list(result.scalars().all())
            pending = [s for s in sessions if s.state not in _TERMINAL_VALUES]
            if pending:
                return pending[0]
            if sessions:
                return sessions[0]
        if anon_id:
            query = select(OnboardingSession).where(
                OnboardingSession.role == role,
                OnboardingSession.anon_id == anon_id,
            )
            if user_id:
                # An anonymous session already claimed by someone else is not ours
                query = query.where(
                    (OnboardingSession.user_id.is_(None)) | (OnboardingSession.user_id == user_id)
                )
            result = await self.db.execute(query.order_by(OnboardingSession.created_at.desc()).limit(1))
            return result.scalar_one_or_none()
        return None

    async def get_by_id(self, session_id: str) -> Optional[OnboardingSession]:
        return await self.db.get(OnboardingSession, session_id)

    async def pending_for_user(self, user_id: str) -> list[OnboardingSession]:
        result = await self.db.execute(
            select(OnboardingSession)
            .where(
                OnboardingSession.user_id == user_id,
                OnboardingSession.state.not_in(_TERMINAL_VALUES),
            )
            .order_by(OnboardingSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def profile_completion_roles(self, user_id: str) -> set[str]:
        """Roles with a triggered profile completion, whatever the session state."""
        result = await self.db.execute(
            select(OnboardingSession.role)
            .where(
                OnboardingSession.user_id == user_id,
                OnboardingSession.profile_completion_triggered_at.is_not(None),
            )
            .distinct()
        )
        return set(result.scalars().all())

    # ── Locking ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def locked(
        self,
        session: OnboardingSession,
        wait: Optional[float] = None,
    ) -> AsyncIterator[OnboardingSession]:
        """
        Hold the session's lock and reload it, so a turn that finished while
        we waited is visible. Raises SessionBusy if the lock is not free in time.
        """
        async with session_lock(f"session:{session.id}", wait=wait):
            await self.db.refresh(session)
            yield session

    # ── Writes ───────────────────────────────────────────────────────

    async def put(self, session: OnboardingSession) -> OnboardingSession:
        """Persist and commit. Returns the same (fresh) object."""
        flag_modified(session, "conversation")
        self.db.add(session)
        await self.db.commit()
        return session

    async def create(
        self,
        role,
        anon_id: Optional[str] = None,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> OnboardingSession:
        role = Role(role).value
        if user_id:
            for existing in await self.pending_for_user(user_id):
                if existing.role == role:
                    raise DeckhandError(f"User already has an open {role} onboarding session")

        session = OnboardingSession(
            role=role,
            anon_id=anon_id,
            user_id=user_id,
            email=email,
            # A session created for a signed-in user has already passed signup
            state=(OnboardingState.CONSENT_PENDING if user_id else INITIAL_STATE).value,
            conversation=[],
        )
        session = await self.put(session)
        logger.info("Created %s session %s (user=%s anon=%s)", role, session.id, user_id, anon_id)
        return session

    async def get_or_create(
        self,
        role,
        user_id: Optional[str] = None,
        anon_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> OnboardingSession:
        session = await self.get(role, user_id=user_id, anon_id=anon_id)
        if session is not None and session.state not in _TERMINAL_VALUES:
            return session
        return await self.create(role, anon_id=anon_id, user_id=user_id, email=email)

    async def save_transcript(self, session: OnboardingSession, transcript: Transcript) -> OnboardingSession:
        session.conversation = transcript.to_list()
        return await self.put(session)

    async def mark_profile_completion_triggered(self, session: OnboardingSession) -> OnboardingSession:
        session.profile_completion_triggered_at = datetime.now(timezone.utc)
        return await self.put(session)

    async def delete(self, session: OnboardingSession) -> None:
        await self.db.delete(session)
        await self.db.commit()
        logger.info("Deleted %s session %s", session.role, session.id)

    # ── Linking ──────────────────────────────────────────────────────

    async def link_anonymous_session(
        self,
        anon_id: str,
        user_id: str,
        email: Optional[str] = None,
        role=None,
        wait: Optional[float] = None,
    ) -> list[OnboardingSession]:
        """
        Attach the anonymous sessions for `anon_id` to `user_id` and apply
        signed_up. When the user already has an open session for a role, that
        session is kept and the anonymous one is left unlinked.

        Each session is linked under its lock, after any in-flight turn.
        """
        query = select(OnboardingSession).where(
            OnboardingSession.anon_id == anon_id,
            OnboardingSession.user_id.is_(None),
        )
        if role is not None:
            query = query.where(OnboardingSession.role == Role(role).value)
        result = await self.db.execute(query.order_by(OnboardingSession.created_at.desc()))
        candidates = list(result.scalars().all())

        # Linking waits out a turn rather than failing like a second chat message
        wait = get_settings().session_lock_timeout_seconds if wait is None else wait
        open_roles = {s.role for s in await self.pending_for_user(user_id)}
        linked = []
        for session in candidates:
            if session.state in _TERMINAL_VALUES:
                continue
            if session.role in open_roles:
                logger.info(
                    "User %s already has an open %s session; leaving %s unlinked",
                    user_id, session.role, session.id,
                )
                continue

            async with self.locked(session, wait=wait):
                if session.user_id is not None or session.state in _TERMINAL_VALUES:
                    continue
                session.user_id = user_id
                if email:
                    session.email = email
                session = await self.put(session)
                if session.state == OnboardingState.SIGNUP_PENDING.value:
                    session = await transition(self, session, Event.SIGNED_UP)

            open_roles.add(session.role)
            linked.append(session)
            logger.info("Linked %s session %s to user %s", session.role, session.id, user_id)
            await realtime.session_linked(user_id, session.id, session.role)

        return linked
