"""
Consent gate.

Mandatory: privacy policy and terms. Both must be accepted before any
onboarding step past signup. Optional: AI-assisted onboarding, which decides
what happens to the conversation the user had before signing up.

Accepted mandatory items are never cleared. Every change is written to the
consent audit log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import ConsentRequired
from ..models.consent import ConsentAuditEntry, ConsentRecord
from ..models.onboarding import OnboardingSession
from . import realtime

logger = logging.getLogger(__name__)


@dataclass
class ConsentStatus:
    mandatory_complete: bool = False
    ai_consent: bool = False
    privacy_accepted_at: Optional[datetime] = None
    terms_accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class AfterConsentResult:
    redirect: object  # RedirectDecision
    reply: Optional[str] = None
    session_id: Optional[str] = None
    archived: bool = False


async def get_record(db: AsyncSession, user_id: str) -> Optional[ConsentRecord]:
    result = await db.execute(select(ConsentRecord).where(ConsentRecord.user_id == user_id))
    return result.scalar_one_or_none()


async def status(db: AsyncSession, user_id: Optional[str]) -> ConsentStatus:
    if not user_id:
        return ConsentStatus()
    record = await get_record(db, user_id)
    if record is None:
        return ConsentStatus()
    return ConsentStatus(
        mandatory_complete=record.completed_at is not None,
        ai_consent=bool(record.ai_processing_consent),
        privacy_accepted_at=record.privacy_accepted_at,
        terms_accepted_at=record.terms_accepted_at,
        completed_at=record.completed_at,
    )


async def require_consent(db: AsyncSession, user_id: Optional[str]) -> None:
    if not (await status(db, user_id)).mandatory_complete:
        raise ConsentRequired("Accept the privacy policy and terms to continue")


def _audit(db: AsyncSession, user_id: str, consent_type: str, action: str, old, new) -> None:
    db.add(ConsentAuditEntry(
        user_id=user_id,
        consent_type=consent_type,
        action=action,
        old_value={"value": old},
        new_value={"value": new},
    ))


async def record(
    db: AsyncSession,
    user_id: str,
    privacy: Optional[bool] = None,
    terms: Optional[bool] = None,
    ai_consent: Optional[bool] = None,
) -> tuple[ConsentRecord, bool]:
    """
    Record the user's choices. None leaves an item untouched.
    Returns (record, first_completion): first_completion is True only on the
    call that made the mandatory set complete.
    """
    now = datetime.now(timezone.utc)
    rec = await get_record(db, user_id)
    if rec is None:
        rec = ConsentRecord(user_id=user_id, ai_processing_consent=False)
        db.add(rec)

    if privacy and rec.privacy_accepted_at is None:
        rec.privacy_accepted_at = now
        _audit(db, user_id, "privacy_policy", "granted", None, now.isoformat())
    if terms and rec.terms_accepted_at is None:
        rec.terms_accepted_at = now
        _audit(db, user_id, "terms", "granted", None, now.isoformat())

    if ai_consent is not None and bool(ai_consent) != bool(rec.ai_processing_consent):
        _audit(
            db, user_id, "ai_processing",
            "granted" if ai_consent else "revoked",
            bool(rec.ai_processing_consent), bool(ai_consent),
        )
        rec.ai_processing_consent = bool(ai_consent)
        rec.ai_processing_consent_at = now

    first_completion = False
    if rec.completed_at is None and rec.privacy_accepted_at and rec.terms_accepted_at:
        rec.completed_at = now
        first_completion = True

    await db.commit()
    logger.info(
        "Consent recorded for user=%s complete=%s ai=%s first=%s",
        user_id, rec.completed_at is not None, rec.ai_processing_consent, first_completion,
    )
    await realtime.consent_updated(user_id, {
        "mandatory_complete": rec.completed_at is not None,
        "ai_consent": rec.ai_processing_consent,
    })
    return rec, first_completion


def _by_precedence(sessions: list[OnboardingSession]) -> list[OnboardingSession]:
    order = {"crew": "prospect", "owner": "owner", "prospect": "prospect"}
    precedence = [order.get(r, r) for r in get_settings().role_precedence]
    return sorted(sessions, key=lambda s: precedence.index(s.role) if s.role in precedence else len(precedence))


async def after_consent(
    db: AsyncSession,
    user_id: str,
    ai_consent: bool,
    provider,
) -> AfterConsentResult:
    """
    Apply the consequences of the user's AI-processing choice to their
    sessions waiting at consent_pending.

    Declined: each transcript is archived once, the session is deleted and the
    user lands on the generic landing page.
    Accepted: the session moves to profile_pending, profile completion is
    marked as triggered and the assistant resumes with a profile summary.
    """
    from ..orchestrator import prompts
    from ..orchestrator.orchestrator import run_turn
    from ..orchestrator.state import Event, OnboardingState, transition
    from ..routing.redirect import landing, welcome
    from ..tools.registry import Identity
    from .audit import archive_transcript
    from .sessions import SessionStore

    store = SessionStore(db)
    waiting = [
        s for s in await store.pending_for_user(user_id)
        if s.state == OnboardingState.CONSENT_PENDING.value
    ]
    if not waiting:
        return AfterConsentResult(redirect=landing("no_pending_session"))

    waiting = _by_precedence(waiting)
    # Each session is handled under its lock, after any in-flight chat turn
    wait = get_settings().session_lock_timeout_seconds

    if not ai_consent:
        archived = 0
        for session in waiting:
            async with store.locked(session, wait=wait):
                if session.state != OnboardingState.CONSENT_PENDING.value:
                    continue
                await archive_transcript(db, session)
                session = await transition(store, session, Event.CONSENT_REJECTED)
                await store.delete(session)
                archived += 1
        logger.info("User %s declined AI processing: %d session(s) archived and deleted", user_id, archived)
        return AfterConsentResult(redirect=landing("ai_consent_declined"), archived=True)

    primary = None
    turn = None
    for session in waiting:
        async with store.locked(session, wait=wait):
            if session.state != OnboardingState.CONSENT_PENDING.value:
                continue
            session = await transition(store, session, Event.CONSENT_ACCEPTED)
            session = await store.mark_profile_completion_triggered(session)
            if primary is None:
                primary = session
                turn = await run_turn(
                    db, primary, provider,
                    Identity(user_id=user_id, email=primary.email),
                    directive=prompts.RESUME_DIRECTIVE,
                )

    if primary is None:
        return AfterConsentResult(redirect=landing("no_pending_session"))
    return AfterConsentResult(
        redirect=welcome(primary.role, "ai_consent_accepted", 2, profile_completion=True),
        reply=turn.reply,
        session_id=primary.id,
    )
