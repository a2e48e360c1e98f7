"""
Error taxonomy for onboarding.

validation / duplicate / not_available_in_step are recovered inside the
orchestrator loop. transient_read_inconsistency is retried at the read site.
fatal aborts the turn with a user-safe message.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    DUPLICATE = "duplicate"
    NOT_AVAILABLE_IN_STEP = "not_available_in_step"
    TRANSIENT_READ_INCONSISTENCY = "transient_read_inconsistency"
    FATAL = "fatal"


# Shown to end users whenever a turn aborts. Never includes exception details.
GENERIC_APOLOGY = (
    "Sorry, something went wrong on my end and nothing was saved. "
    "Please try again in a moment."
)


class DeckhandError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str = "", kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class OperationError(DeckhandError):
    """Raised by operation executors. The kind decides how the loop recovers."""

    def __init__(self, kind: ErrorKind, message: str, payload: Optional[dict] = None):
        super().__init__(message, kind)
        # e.g. the id of the record a duplicate collided with
        self.payload = payload or {}


class ProviderError(DeckhandError):
    """The AI provider failed or returned nothing usable."""


class ProviderTimeout(ProviderError):
    """The AI provider did not answer within the configured timeout."""


class IllegalTransition(DeckhandError, ValueError):
    """An event does not apply to the session's current state."""


class ConsentRequired(DeckhandError):
    """Mandatory acknowledgements are missing."""


class TransientReadInconsistency(DeckhandError):
    kind = ErrorKind.TRANSIENT_READ_INCONSISTENCY


class SessionBusy(DeckhandError):
    """Another turn for the same session is still in flight."""
