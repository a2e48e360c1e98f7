"""
Legal consent records and their audit trail.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class ConsentRecord(RecordBase):
    __tablename__ = "consent_records"

    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    # Mandatory: both must be set before any onboarding step past signup
    privacy_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    terms_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Optional: AI-assisted onboarding
    ai_processing_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_processing_consent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set the moment both mandatory timestamps are present
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ConsentAuditEntry(RecordBase):
    __tablename__ = "consent_audit_log"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    consent_type: Mapped[str] = mapped_column(String, nullable=False)  # privacy_policy, terms, ai_processing
    action: Mapped[str] = mapped_column(String, nullable=False)  # granted, revoked
    old_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
