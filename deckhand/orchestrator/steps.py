"""
Step scoping: which operations the AI may call in each onboarding state.

Checked once, at the dispatch boundary, against the state current at the
moment of dispatch. Anything else gets a not_available_in_step result and the
executor is never invoked.
"""

from typing import Optional

from .state import OnboardingState

ALLOWED_OPERATIONS: dict[OnboardingState, frozenset[str]] = {
    OnboardingState.SIGNUP_PENDING: frozenset(),
    OnboardingState.CONSENT_PENDING: frozenset(),
    OnboardingState.PROFILE_PENDING: frozenset({"update_profile"}),
    OnboardingState.BOAT_PENDING: frozenset({"fetch_reference_details", "create_vessel"}),
    OnboardingState.JOURNEY_PENDING: frozenset({"generate_route"}),
    OnboardingState.COMPLETED: frozenset(),
    OnboardingState.DELETED: frozenset(),
}

# The goal operation of a step. Used when nudging a stalled AI.
EXPECTED_OPERATION: dict[OnboardingState, str] = {
    OnboardingState.PROFILE_PENDING: "update_profile",
    OnboardingState.BOAT_PENDING: "create_vessel",
    OnboardingState.JOURNEY_PENDING: "generate_route",
}


def allowed_operations(state) -> frozenset[str]:
    try:
        return ALLOWED_OPERATIONS[OnboardingState(state)]
    except ValueError:
        return frozenset()


def expected_operation(state) -> Optional[str]:
    try:
        return EXPECTED_OPERATION.get(OnboardingState(state))
    except ValueError:
        return None


def is_allowed(state, operation: str) -> bool:
    return operation in allowed_operations(state)
