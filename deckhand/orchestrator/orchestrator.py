"""
Main onboarding loop.

One inbound turn (a user message or a system directive) → up to
ORCH_MAX_ITERATIONS provider round-trips → one assistant reply.

Each round-trip:
  prompt → provider → parse tool calls
    no calls   → parse-retry, nudge, or final answer
    calls      → authorize against the current step, execute one by one,
                 fold results into the transcript, advance state, loop

Recoverable failures (validation, duplicate, not_available_in_step) are fed
back to the AI. Fatal ones end the turn with a generic apology. Every other
exit, including the iteration cap, goes through the hallucination check.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import ErrorKind, GENERIC_APOLOGY, ProviderError
from ..core.guardrails import check_input, check_output
from ..models.onboarding import OnboardingSession
from ..services import consent, realtime
from ..services.provider import AIProvider
from ..services.sessions import SessionStore
from ..tools import registry
from ..tools.registry import Identity, ToolResult
from . import checks, prompts
from .parsing import parse_tool_calls
from .state import Event, OnboardingState, can_apply, transition
from .steps import allowed_operations, expected_operation, is_allowed
from .transcript import Transcript, TurnKind

logger = logging.getLogger(__name__)

# Successful (or duplicate) operation → state machine event
OPERATION_EVENTS = {
    "update_profile": Event.PROFILE_SAVED,
    "create_vessel": Event.VESSEL_CREATED,
    "generate_route": Event.JOURNEY_CREATED,
}

_CREATED_FLAGS = {
    Event.PROFILE_SAVED: "profile_saved",
    Event.VESSEL_CREATED: "vessel_created",
    Event.JOURNEY_CREATED: "journey_created",
}


@dataclass
class TurnResult:
    reply: str
    session_id: str
    state: str
    iterations: int = 0
    nudges: int = 0
    parse_retries: int = 0
    tool_calls: list = field(default_factory=list)
    created: dict = field(default_factory=dict)
    hit_max_iterations: bool = False
    fatal: bool = False
    blocked: bool = False
    corrected_claims: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reply": self.reply,
            "session_id": self.session_id,
            "state": self.state,
            "iterations": self.iterations,
            "nudges": self.nudges,
            "tool_calls": self.tool_calls,
            "created": self.created,
            "hit_max_iterations": self.hit_max_iterations,
            "fatal": self.fatal,
        }


def _not_available(name: str, state: str) -> ToolResult:
    allowed = ", ".join(sorted(allowed_operations(state))) or "none"
    return ToolResult(
        name=name,
        success=False,
        error_kind=ErrorKind.NOT_AVAILABLE_IN_STEP,
        error_message=f"Current step is '{state}'. Allowed here: {allowed}.",
    )


async def run_turn(
    db: AsyncSession,
    session: OnboardingSession,
    provider: AIProvider,
    identity: Identity,
    message: Optional[str] = None,
    directive: Optional[str] = None,
) -> TurnResult:
    """
    Run one conversational turn. Exactly one of `message` (from the user) or
    `directive` (system-injected) is expected.

    Raises ConsentRequired when the session is past signup and the user has
    not accepted the mandatory terms.
    """
    settings = get_settings()
    store = SessionStore(db)
    start = time.monotonic()

    # 1. Input guardrail
    if message is not None:
        guard = check_input(message, identity.user_id or "")
        if not guard.allowed:
            return TurnResult(
                reply=guard.reason or "Message not accepted.",
                session_id=session.id, state=session.state, blocked=True,
            )

    # 2. Consent gate
    if session.state != OnboardingState.SIGNUP_PENDING.value:
        await consent.require_consent(db, identity.user_id or session.user_id)

    transcript = Transcript.from_list(session.conversation)
    inbound_index = len(transcript)
    if message is not None:
        transcript = transcript.append(TurnKind.USER, message)
    if directive:
        transcript = transcript.append(TurnKind.DIRECTIVE, directive)
    prior_assistant = transcript.last(TurnKind.ASSISTANT, before=inbound_index)

    await realtime.turn_started(session, {"state": session.state})

    result = TurnResult(reply="", session_id=session.id, state=session.state)
    satisfied_ops: set[str] = set()
    executed_any = False
    final_text: Optional[str] = None
    last_text: Optional[str] = None

    for iteration in range(settings.orch_max_iterations):
        result.iterations = iteration + 1
        state = session.state

        # 3. Ask the provider
        prompt = prompts.build_prompt(
            session.role,
            state,
            registry.schemas_for(allowed_operations(state)),
            transcript,
            settings.orch_prompt_token_budget,
        )
        try:
            raw = await provider.generate(prompt)
        except ProviderError as e:
            logger.error("Turn aborted for session %s: provider failed: %s", session.id, e)
            result.fatal = True
            break

        parsed = parse_tool_calls(raw)
        if parsed.content:
            last_text = parsed.content

        # 4. No calls: retry a broken call, nudge, or finish
        if not parsed.calls:
            if parsed.attempted and result.parse_retries < settings.orch_max_parse_retries:
                result.parse_retries += 1
                logger.info("Session %s: tool call did not parse, asking again", session.id)
                transcript = transcript.append(TurnKind.ASSISTANT, raw)
                transcript = transcript.append(TurnKind.DIRECTIVE, prompts.PARSE_FAILURE_DIRECTIVE)
                continue

            expected = expected_operation(state)
            stalled = (
                checks.looks_like_summary(prior_assistant.content if prior_assistant else None)
                or checks.looks_like_summary(parsed.content)
                or bool(checks.claimed_operations(parsed.content) - satisfied_ops)
            )
            if (
                message is not None
                and checks.is_affirmation(message)
                and stalled
                and not executed_any
                and expected
                and result.nudges < settings.orch_max_nudges
            ):
                result.nudges += 1
                logger.warning(
                    "Session %s: user confirmed but no %s call, nudging (%d/%d)",
                    session.id, expected, result.nudges, settings.orch_max_nudges,
                )
                transcript = transcript.append(TurnKind.ASSISTANT, parsed.content or raw)
                transcript = transcript.append(TurnKind.DIRECTIVE, prompts.nudge_directive(expected))
                continue

            final_text = parsed.content or prompts.CONTINUE_PROMPT
            break

        # 5. Execute calls one at a time
        transcript = transcript.append(TurnKind.ASSISTANT, raw)
        for call in parsed.calls:
            state = session.state
            if not is_allowed(state, call.name):
                logger.warning("Session %s: %s not allowed in %s", session.id, call.name, state)
                tool_result = _not_available(call.name, state)
            else:
                tool_result = await registry.execute(
                    call.name, call.arguments, identity, db, role=session.role,
                )

            result.tool_calls.append({
                "name": call.name,
                "success": tool_result.success,
                "error_kind": tool_result.error_kind.value if tool_result.error_kind else None,
            })
            await realtime.operation_completed(session, call.name, tool_result.satisfied)

            if tool_result.error_kind == ErrorKind.FATAL:
                result.fatal = True
                break

            transcript = transcript.append(TurnKind.TOOL_RESULT, tool_result.to_text(), name=call.name)

            if tool_result.satisfied:
                executed_any = True
                satisfied_ops.add(call.name)
                event = OPERATION_EVENTS.get(call.name)
                if event is not None and can_apply(session.role, session.state, event):
                    session = await transition(store, session, event)
                    result.created[_CREATED_FLAGS[event]] = True

        if result.fatal:
            # Drop whatever the failed operation left uncommitted
            await db.rollback()
            await db.refresh(session)
            break
    else:
        result.hit_max_iterations = True
        logger.warning(
            "Session %s: hit max iterations (%d) without a final answer",
            session.id, settings.orch_max_iterations,
        )
        final_text = last_text or prompts.CONTINUE_PROMPT

    if result.fatal:
        final_text = GENERIC_APOLOGY
        await realtime.turn_failed(session, {"state": session.state})
    else:
        # Every non-fatal exit: never claim a save that did not happen
        unbacked = checks.claimed_operations(final_text) - satisfied_ops
        if unbacked:
            logger.warning(
                "Session %s: reply claims %s without a successful result",
                session.id, sorted(unbacked),
            )
            result.corrected_claims = sorted(unbacked)
            final_text += prompts.correction_note(unbacked)

    guard = check_output(final_text or "")
    reply = guard.modified_input or final_text or prompts.CONTINUE_PROMPT

    transcript = transcript.append(TurnKind.ASSISTANT, reply)
    session = await store.save_transcript(session, transcript)

    result.reply = reply
    result.state = session.state
    elapsed = time.monotonic() - start
    logger.info(
        "Turn done: session=%s state=%s iterations=%d nudges=%d calls=%d (%dms)",
        session.id, session.state, result.iterations, result.nudges,
        len(result.tool_calls), int(elapsed * 1000),
    )
    await realtime.turn_completed(session, {
        "state": session.state,
        "created": result.created,
        "elapsed_ms": int(elapsed * 1000),
    })
    return result
