"""
Onboarding sessions. One per (role, user) or (role, anonymous id).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class OnboardingSession(RecordBase):
    __tablename__ = "onboarding_sessions"

    role: Mapped[str] = mapped_column(String, nullable=False, index=True)  # owner, prospect
    # Identifier handed to the browser before signup; used to link on auth
    anon_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    state: Mapped[str] = mapped_column(String, nullable=False, default="signup_pending")
    # States: signup_pending, consent_pending, profile_pending,
    #         boat_pending, journey_pending (owner only), completed
    conversation: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Example:
    # [
    #   {"kind": "user", "content": "I have a 38ft sloop"},
    #   {"kind": "assistant", "content": "Great! ..."},
    #   {"kind": "tool_result", "name": "create_vessel", "content": "..."},
    # ]
    profile_completion_triggered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
