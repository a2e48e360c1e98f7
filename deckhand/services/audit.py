"""
Transcript archive. A session's transcript is copied here before the
session is deleted, and only once per session.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit import ArchivedConversation, ArchivedMessage
from ..models.onboarding import OnboardingSession

logger = logging.getLogger(__name__)


def _title_from(conversation: list) -> str:
    for turn in conversation or []:
        if turn.get("kind") == "user" and turn.get("content"):
            title = turn["content"][:80].strip()
            return title + "..." if len(turn["content"]) > 80 else title
    return "Onboarding conversation"


async def archive_transcript(db: AsyncSession, session: OnboardingSession) -> ArchivedConversation:
    """Copy the transcript into the archive. Returns the existing copy if already archived."""
    result = await db.execute(
        select(ArchivedConversation).where(ArchivedConversation.source_session_id == session.id)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        logger.info("Session %s already archived as %s", session.id, existing.id)
        return existing

    conversation = session.conversation or []
    archived = ArchivedConversation(
        user_id=session.user_id or "",
        role=session.role,
        title=_title_from(conversation),
        source_session_id=session.id,
        messages=[
            ArchivedMessage(kind=turn.get("kind", "user"), content=turn.get("content"), sequence_number=i)
            for i, turn in enumerate(conversation)
        ],
    )
    db.add(archived)
    await db.flush()
    logger.info("Archived %d turns from session %s", len(conversation), session.id)
    return archived


async def count_archives(db: AsyncSession, session_id: str) -> int:
    result = await db.execute(
        select(ArchivedConversation.id).where(ArchivedConversation.source_session_id == session_id)
    )
    return len(result.scalars().all())
