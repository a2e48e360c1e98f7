"""
Builds a RedirectContext from the store.

Called after the caller has committed whatever the decision depends on.
Reads run one after another, each through read_with_retry. A read that
still fails degrades to a negative value so a decision is always produced.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import TransientReadInconsistency
from ..models.profile import Profile, Vessel
from ..services.retry import read_with_retry
from ..services.sessions import SessionStore
from .redirect import RedirectContext, RedirectDecision, decide

logger = logging.getLogger(__name__)


async def build_redirect_context(
    db: AsyncSession,
    user_id: Optional[str],
    referral_source: Optional[str] = None,
    expect_session: bool = False,
) -> RedirectContext:
    """
    expect_session: the caller just linked or created a session, so an empty
    read is retried a few times before being believed.
    """
    if not user_id:
        return RedirectContext(referral_source=referral_source)

    store = SessionStore(db)

    # 1. Open onboarding sessions
    try:
        sessions = await read_with_retry(
            lambda: store.pending_for_user(user_id),
            accept=(lambda s: bool(s)) if expect_session else None,
            label=f"pending sessions for {user_id}",
        )
    except TransientReadInconsistency as e:
        logger.warning("Redirect context: sessions unavailable, assuming none: %s", e)
        sessions = []

    # 2. Triggered profile completion, on any session (profile_saved clears it)
    try:
        triggered = await read_with_retry(
            lambda: store.profile_completion_roles(user_id),
            label=f"profile completion for {user_id}",
        )
    except TransientReadInconsistency as e:
        logger.warning("Redirect context: profile completion unavailable, assuming none: %s", e)
        triggered = set()

    # 3. Profile
    async def _profile():
        result = await db.execute(select(Profile).where(Profile.user_id == user_id))
        return result.scalar_one_or_none()

    try:
        profile = await read_with_retry(_profile, label=f"profile for {user_id}")
    except TransientReadInconsistency as e:
        logger.warning("Redirect context: profile unavailable, assuming none: %s", e)
        profile = None

    # 4. Owned vessel
    async def _has_vessel():
        result = await db.execute(select(Vessel.id).where(Vessel.owner_id == user_id).limit(1))
        return result.scalar_one_or_none() is not None

    try:
        has_vessel = await read_with_retry(_has_vessel, label=f"vessels for {user_id}")
    except TransientReadInconsistency as e:
        logger.warning("Redirect context: vessels unavailable, assuming none: %s", e)
        has_vessel = False

    roles = {s.role for s in sessions}

    return RedirectContext(
        user_id=user_id,
        referral_source=referral_source,
        has_pending_owner_session="owner" in roles,
        has_pending_prospect_session="prospect" in roles,
        owner_profile_completion_triggered="owner" in triggered,
        prospect_profile_completion_triggered="prospect" in triggered,
        profile_roles=tuple(profile.roles or ()) if profile else (),
        profile_has_username=bool(profile and profile.username),
        has_owned_asset=has_vessel,
        has_profile=profile is not None,
    )


async def decide_for_user(
    db: AsyncSession,
    user_id: Optional[str],
    referral_source: Optional[str] = None,
    expect_session: bool = False,
) -> RedirectDecision:
    context = await build_redirect_context(db, user_id, referral_source, expect_session)
    decision = decide(context, get_settings().role_precedence)
    logger.info(
        "Redirect user=%s → %s (priority %d, %s)",
        user_id or "anon", decision.url, decision.priority, decision.reason,
    )
    return decision
