"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .onboarding import OnboardingSession
from .consent import ConsentRecord, ConsentAuditEntry
from .audit import ArchivedConversation, ArchivedMessage
from .profile import Profile, Vessel, Journey, JourneyLeg

__all__ = [
    "RecordBase",
    "OnboardingSession",
    "ConsentRecord", "ConsentAuditEntry",
    "ArchivedConversation", "ArchivedMessage",
    "Profile", "Vessel", "Journey", "JourneyLeg",
]
