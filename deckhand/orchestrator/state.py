"""
Onboarding state machine.

States only move forward. Owners walk the full progression, prospects stop
after the profile:

  owner:    signup_pending → consent_pending → profile_pending
            → boat_pending → journey_pending → completed
  prospect: signup_pending → consent_pending → profile_pending → completed

Declining AI processing at consent_pending ends in `deleted` (the session row
is removed after its transcript is archived).

Transitions are table-driven. Anything not in the table raises
IllegalTransition. The orchestrator only fires events from successful (or
duplicate-as-success) operation results, never from user text.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ..core.errors import IllegalTransition
from ..services import realtime

if TYPE_CHECKING:
    from ..models.onboarding import OnboardingSession
    from ..services.sessions import SessionStore

logger = logging.getLogger(__name__)


class Role(str, Enum):
    OWNER = "owner"
    PROSPECT = "prospect"


class OnboardingState(str, Enum):
    SIGNUP_PENDING = "signup_pending"
    CONSENT_PENDING = "consent_pending"
    PROFILE_PENDING = "profile_pending"
    BOAT_PENDING = "boat_pending"
    JOURNEY_PENDING = "journey_pending"
    COMPLETED = "completed"
    DELETED = "deleted"


class Event(str, Enum):
    SIGNED_UP = "signed_up"
    CONSENT_ACCEPTED = "consent_accepted"
    CONSENT_REJECTED = "consent_rejected"
    PROFILE_SAVED = "profile_saved"
    VESSEL_CREATED = "vessel_created"
    JOURNEY_CREATED = "journey_created"


INITIAL_STATE = OnboardingState.SIGNUP_PENDING
TERMINAL_STATES = frozenset({OnboardingState.COMPLETED, OnboardingState.DELETED})

_PROGRESSION = {
    Role.OWNER: (
        OnboardingState.SIGNUP_PENDING,
        OnboardingState.CONSENT_PENDING,
        OnboardingState.PROFILE_PENDING,
        OnboardingState.BOAT_PENDING,
        OnboardingState.JOURNEY_PENDING,
        OnboardingState.COMPLETED,
    ),
    Role.PROSPECT: (
        OnboardingState.SIGNUP_PENDING,
        OnboardingState.CONSENT_PENDING,
        OnboardingState.PROFILE_PENDING,
        OnboardingState.COMPLETED,
    ),
}

# (role, from_state, event) -> to_state
_TRANSITIONS: dict[tuple[Role, OnboardingState, Event], OnboardingState] = {}

for _role in Role:
    _TRANSITIONS[(_role, OnboardingState.SIGNUP_PENDING, Event.SIGNED_UP)] = OnboardingState.CONSENT_PENDING
    _TRANSITIONS[(_role, OnboardingState.CONSENT_PENDING, Event.CONSENT_ACCEPTED)] = OnboardingState.PROFILE_PENDING
    _TRANSITIONS[(_role, OnboardingState.CONSENT_PENDING, Event.CONSENT_REJECTED)] = OnboardingState.DELETED

_TRANSITIONS[(Role.OWNER, OnboardingState.PROFILE_PENDING, Event.PROFILE_SAVED)] = OnboardingState.BOAT_PENDING
_TRANSITIONS[(Role.OWNER, OnboardingState.BOAT_PENDING, Event.VESSEL_CREATED)] = OnboardingState.JOURNEY_PENDING
_TRANSITIONS[(Role.OWNER, OnboardingState.JOURNEY_PENDING, Event.JOURNEY_CREATED)] = OnboardingState.COMPLETED
_TRANSITIONS[(Role.PROSPECT, OnboardingState.PROFILE_PENDING, Event.PROFILE_SAVED)] = OnboardingState.COMPLETED


def progression(role) -> tuple[OnboardingState, ...]:
    return _PROGRESSION[Role(role)]


def rank(state) -> int:
    """Position in the owner progression. `deleted` ranks after everything."""
    state = OnboardingState(state)
    if state == OnboardingState.DELETED:
        return len(_PROGRESSION[Role.OWNER])
    return _PROGRESSION[Role.OWNER].index(state)


def is_terminal(state) -> bool:
    return OnboardingState(state) in TERMINAL_STATES


def is_pending(state) -> bool:
    """True for any state a user can still act on."""
    try:
        return not is_terminal(state)
    except ValueError:
        return False


def can_apply(role, state, event) -> bool:
    try:
        return (Role(role), OnboardingState(state), Event(event)) in _TRANSITIONS
    except ValueError:
        return False


def apply_event(role, state, event) -> OnboardingState:
    """Pure transition lookup. Raises IllegalTransition when the event does not apply."""
    try:
        key = (Role(role), OnboardingState(state), Event(event))
    except ValueError as e:
        raise IllegalTransition(f"Unknown role/state/event: {e}")
    if key not in _TRANSITIONS:
        raise IllegalTransition(
            f"Event '{key[2].value}' does not apply to {key[0].value} session in '{key[1].value}'"
        )
    return _TRANSITIONS[key]


async def transition(
    store: "SessionStore",
    session: "OnboardingSession",
    event,
) -> "OnboardingSession":
    """
    Apply an event to a session and persist it. The commit is awaited before
    returning, so any read that follows sees the new state.
    """
    old = OnboardingState(session.state)
    new = apply_event(session.role, old, event)

    session.state = new.value
    if Event(event) == Event.PROFILE_SAVED:
        session.profile_completion_triggered_at = None

    session = await store.put(session)
    logger.info(
        "Session %s (%s): %s --%s--> %s",
        session.id, session.role, old.value, Event(event).value, new.value,
    )

    await realtime.state_changed(session, old.value, new.value)
    return session
