"""
Prompt building for the onboarding orchestrator.

The prompt is plain text: instructions for the current step, the schemas of
the operations allowed in that step, and the transcript trimmed to a token
budget (oldest turns dropped first).
"""

import json

from ..services import llm
from .state import OnboardingState, Role
from .transcript import Transcript, render_turn, trim_to_budget

SYSTEM_PROMPT = """You are the Deckhand onboarding assistant. You help sailors get set up on a crewing platform by chatting with them, one step at a time.

Rules:
- Ask for one or two things at a time. Keep replies short and friendly.
- Before saving anything, show a short summary (one "Field: value" line per field) and ask the user to confirm.
- Only call an operation after the user confirmed the summary.
- Never say something was saved, created or generated unless an operation result in this conversation says so.
- Only use the operations listed for the current step."""

CALL_FORMAT = """To call an operation, include exactly one block like this in your reply:
```tool_call
{"name": "<operation>", "arguments": {<field>: <value>}}
```
Use real values from the conversation. Never use placeholders like "..."."""

ROLE_INTRO = {
    Role.OWNER: "The user is a boat owner looking for crew.",
    Role.PROSPECT: "The user is a sailor looking to join a crew.",
}

STEP_INSTRUCTIONS = {
    (Role.OWNER, OnboardingState.SIGNUP_PENDING): (
        "The user has not signed up yet. Get to know them and their sailing: name, experience, "
        "their boat and the trip they have in mind. Do not save anything. When you have a good "
        "picture, suggest they sign up so you can save it for them."
    ),
    (Role.PROSPECT, OnboardingState.SIGNUP_PENDING): (
        "The user has not signed up yet. Get to know them: name, sailing experience, "
        "certifications, skills and the kind of sailing they want. Do not save anything. When you "
        "have a good picture, suggest they sign up so you can save it for them."
    ),
    (Role.OWNER, OnboardingState.CONSENT_PENDING): (
        "The user signed up but has not accepted the privacy policy and terms yet. "
        "Ask them to review and accept them to continue. Do not save anything."
    ),
    (Role.PROSPECT, OnboardingState.CONSENT_PENDING): (
        "The user signed up but has not accepted the privacy policy and terms yet. "
        "Ask them to review and accept them to continue. Do not save anything."
    ),
    (Role.OWNER, OnboardingState.PROFILE_PENDING): (
        "Step 1 of 3: the skipper profile. Collect full name, a short bio, experience level (1-4), "
        "certifications, skills and comfort zones. Show the summary, and once confirmed call update_profile."
    ),
    (Role.PROSPECT, OnboardingState.PROFILE_PENDING): (
        "The crew profile. Collect full name, a short bio, experience level (1-4), certifications, "
        "skills and comfort zones. Show the summary, and once confirmed call update_profile."
    ),
    (Role.OWNER, OnboardingState.BOAT_PENDING): (
        "Step 2 of 3: the boat. Ask for the boat's name and make/model. You may call "
        "fetch_reference_details with the make/model to fill in specs. Show the summary "
        "(name, type, make/model, length, capacity, home port), and once confirmed call create_vessel."
    ),
    (Role.OWNER, OnboardingState.JOURNEY_PENDING): (
        "Step 3 of 3: the first journey. Ask where and when they want to sail. Propose an ordered "
        "list of stops with coordinates, show the summary (name, dates, stops), and once confirmed "
        "call generate_route."
    ),
    (Role.OWNER, OnboardingState.COMPLETED): (
        "Onboarding is complete. Congratulate the owner and point them to their boats and journeys. "
        "Do not call any operation."
    ),
    (Role.PROSPECT, OnboardingState.COMPLETED): (
        "Onboarding is complete. Congratulate the sailor and point them to browsing journeys. "
        "Do not call any operation."
    ),
}

# ── System-injected directives ───────────────────────────────────────

PARSE_FAILURE_DIRECTIVE = (
    "Your tool call did not parse. Reply again with a single ```tool_call block containing valid "
    "JSON with \"name\" and \"arguments\", using the actual values."
)

RESUME_DIRECTIVE = (
    "The user just signed up and accepted the terms, including AI-assisted onboarding. "
    "Using what they already told you in this conversation, show a clear profile summary "
    "and ask them to confirm before saving. Do not call update_profile until they confirm."
)

PROFILE_COMPLETION_DIRECTIVE = (
    "The user asked to finish their profile with your help. Show a summary of what you know "
    "and ask for anything that is missing. Do not call update_profile until they confirm."
)

CONTINUE_PROMPT = "Let's keep going. What would you like to do next?"

_RESOURCE_NAMES = {
    "update_profile": "profile",
    "create_vessel": "boat",
    "generate_route": "journey",
}


def nudge_directive(operation: str) -> str:
    return f"The user confirmed. Call `{operation}` now with the data you just summarized."


def correction_note(operations) -> str:
    names = [_RESOURCE_NAMES.get(op, op) for op in sorted(operations)]
    what = " and ".join(names)
    return f"\n\n(Correction: your {what} has not been saved yet. Please confirm once more and I'll save it.)"


def step_instructions(role, state) -> str:
    key = (Role(role), OnboardingState(state))
    return STEP_INSTRUCTIONS.get(key, "Help the user with their onboarding. Do not call any operation.")


def build_prompt(
    role,
    state,
    schemas: list[dict],
    transcript: Transcript,
    token_budget: int,
) -> str:
    role = Role(role)
    parts = [
        SYSTEM_PROMPT,
        ROLE_INTRO[role],
        f"## Current step\n{step_instructions(role, state)}",
    ]
    if schemas:
        parts.append("## Available operations\n" + json.dumps(schemas, indent=1))
        parts.append(CALL_FORMAT)
    else:
        parts.append("## Available operations\nNone in this step. Do not call any operation.")

    header = "\n\n".join(parts)
    budget = max(500, token_budget - llm.estimate_tokens(header))
    turns, dropped = trim_to_budget(transcript, budget)

    lines = []
    if dropped:
        lines.append(f"[{dropped} earlier messages were trimmed for length]")
    lines.extend(render_turn(t) for t in turns)

    return f"{header}\n\n## Conversation\n" + "\n\n".join(lines) + "\n\nassistant:"
