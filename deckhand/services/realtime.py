"""
Realtime notifications. Thin wrapper around core.redis.
Provides typed event helpers for onboarding sessions.
"""

from ..core import redis as _redis


def _channel_key(session) -> str:
    return session.user_id or session.anon_id or session.id


# ── Onboarding events ────────────────────────────────────────────────

async def state_changed(session, old_state: str, new_state: str):
    data = {
        "session_id": session.id,
        "role": session.role,
        "from": old_state,
        "to": new_state,
    }
    await _redis.notify_session(_channel_key(session), "onboarding.state_changed", data)
    if session.user_id:
        await _redis.notify_user(session.user_id, "onboarding.state_changed", data)


async def turn_started(session, data: dict = None):
    await _redis.notify_session(_channel_key(session), "onboarding.turn_started", data)


async def turn_completed(session, data: dict = None):
    await _redis.notify_session(_channel_key(session), "onboarding.turn_completed", data)


async def turn_failed(session, data: dict = None):
    await _redis.notify_session(_channel_key(session), "onboarding.turn_failed", data)


# ── Operation events ─────────────────────────────────────────────────

async def operation_completed(session, name: str, success: bool):
    await _redis.notify_session(
        _channel_key(session), "onboarding.operation", {"operation": name, "success": success}
    )


# ── Consent / auth ───────────────────────────────────────────────────

async def consent_updated(user_id: str, data: dict = None):
    await _redis.notify_user(user_id, "consent.updated", data)


async def session_linked(user_id: str, session_id: str, role: str):
    await _redis.notify_user(
        user_id, "onboarding.linked", {"session_id": session_id, "role": role}
    )
