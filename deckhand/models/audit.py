"""
Archived transcripts. Kept when an onboarding session is deleted because the
user declined AI processing.
"""

from typing import Optional

from sqlalchemy import String, Text, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import RecordBase


class ArchivedConversation(RecordBase):
    __tablename__ = "archived_conversations"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # Unique: a session's transcript is archived once
    source_session_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    messages: Mapped[list["ArchivedMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ArchivedMessage.sequence_number",
    )


class ArchivedMessage(RecordBase):
    __tablename__ = "archived_messages"

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("archived_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String, nullable=False)  # user, assistant, tool_result, directive
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    conversation: Mapped["ArchivedConversation"] = relationship(back_populates="messages")
