"""
Guardrails: input/output validation layer.

Layers:
  1. Input validation (length, emptiness)
  2. Prompt-injection logging (never blocks)
  3. Output validation (response length, prompt leakage)
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────

MAX_MESSAGE_LENGTH = 10000       # Max input message length
MAX_RESPONSE_LENGTH = 20000      # Max output response length

_INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?previous\s+instructions",
    r"ignore\s+(all\s+)?above",
    r"disregard\s+(all\s+)?previous",
    r"you\s+are\s+now\s+(?:a|an)\s+",
    r"<\s*system\s*>",
    r"\[system:",
]

_LEAK_INDICATORS = [
    "## available operations",
    "## current step",
    "you are the deckhand onboarding assistant",
]


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None
    modified_input: Optional[str] = None


# ── Input Guardrails ──────────────────────────────────────────────────

def check_input(message: str, user_id: str = "") -> GuardrailResult:
    """
    Validate user input before processing.
    Returns GuardrailResult with allowed=False if blocked.
    """
    if len(message) > MAX_MESSAGE_LENGTH:
        return GuardrailResult(
            allowed=False,
            reason=f"Message too long ({len(message)} chars). Maximum is {MAX_MESSAGE_LENGTH}.",
        )

    if not message.strip():
        return GuardrailResult(allowed=False, reason="Message is empty.")

    msg_lower = message.lower()
    for pattern in _INJECTION_PATTERNS:
        if re.search(pattern, msg_lower):
            # Logged only. Users cannot inject directives: system turns are
            # never built from user text.
            logger.warning("Potential injection detected from user=%s: %s", user_id or "anon", message[:100])
            break

    return GuardrailResult(allowed=True)


# ── Output Guardrails ─────────────────────────────────────────────────

def check_output(response: str) -> GuardrailResult:
    """Validate assistant output before sending to user."""
    if len(response) > MAX_RESPONSE_LENGTH:
        return GuardrailResult(
            allowed=True,
            modified_input=response[:MAX_RESPONSE_LENGTH] + "\n\n[Response truncated due to length]",
        )

    resp_lower = response.lower()
    for indicator in _LEAK_INDICATORS:
        if indicator in resp_lower:
            logger.warning("Possible system prompt leak detected in output")
            break

    return GuardrailResult(allowed=True)
