"""
Tests for session locks, the auth hand-off, bounded read retries and
turns racing on one session.
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from deckhand.core.errors import SessionBusy, TransientReadInconsistency
from deckhand.core.locks import _local_locks, session_lock
from deckhand.models.onboarding import OnboardingSession
from deckhand.orchestrator.orchestrator import run_turn
from deckhand.services import consent
from deckhand.services.handoff import current_handoff, handoff_writer, wait_for_handoff
from deckhand.services.provider import AIProvider
from deckhand.services.retry import read_with_retry
from deckhand.services.sessions import SessionStore
from deckhand.tools.registry import Identity

from conftest import ScriptedProvider, run, run_with_factory

PROFILE_SUMMARY = "Here's your profile:\n- Name: Ana Lima\n- Experience: 3\nDoes this look right?"


class TestSessionLock:
    def test_turns_are_serialized(self):
        """Should never let two holders of the same key overlap."""
        events = []

        async def turn(name):
            async with session_lock("owner:u1", wait=1):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        async def scenario():
            await asyncio.gather(turn("a"), turn("b"))

        run(scenario())
        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )
        assert "owner:u1" not in _local_locks

    def test_busy_session(self):
        """Should raise SessionBusy when the lock is not free in time."""

        async def scenario():
            async with session_lock("owner:u1"):
                with pytest.raises(SessionBusy):
                    async with session_lock("owner:u1", wait=0.05):
                        pass

        run(scenario())

    def test_different_keys_do_not_block(self):
        async def scenario():
            async with session_lock("owner:u1"):
                async with session_lock("prospect:u1", wait=0.05):
                    return True

        assert run(scenario())


class TestHandoff:
    def test_reader_waits_for_writer(self):
        """Should hold the reader until the writer finished."""
        order = []

        async def writer():
            async with handoff_writer("u1"):
                await asyncio.sleep(0.02)
                order.append("linked")

        async def reader():
            await asyncio.sleep(0)
            ok = await wait_for_handoff("u1", timeout=1)
            order.append("redirect")
            return ok

        async def scenario():
            _, ok = await asyncio.gather(writer(), reader())
            return ok

        assert run(scenario())
        assert order == ["linked", "redirect"]
        assert current_handoff("u1") is None

    def test_no_handoff_returns_at_once(self):
        assert run(wait_for_handoff("nobody", timeout=0.01))

    def test_failed_writer(self):
        async def writer():
            with pytest.raises(RuntimeError):
                async with handoff_writer("u1"):
                    await asyncio.sleep(0.01)
                    raise RuntimeError("link failed")

        async def scenario():
            results = await asyncio.gather(writer(), wait_for_handoff("u1", timeout=1))
            return results[1]

        assert run(scenario()) is False
        assert current_handoff("u1") is None

    def test_reader_times_out(self):
        async def writer():
            async with handoff_writer("u1"):
                await asyncio.sleep(0.2)

        async def reader():
            await asyncio.sleep(0)
            return await wait_for_handoff("u1", timeout=0.01)

        async def scenario():
            _, ok = await asyncio.gather(writer(), reader())
            return ok

        assert run(scenario()) is False


class TestReadRetry:
    def test_returns_first_good_read(self):
        calls = []

        async def read():
            calls.append(1)
            return ["session"]

        assert run(read_with_retry(read, accept=bool, attempts=3, delay=0)) == ["session"]
        assert len(calls) == 1

    def test_retries_until_accepted(self):
        """Should re-read while a just-written row is not visible yet."""
        values = iter([[], [], ["session"]])

        async def read():
            return next(values)

        assert run(read_with_retry(read, accept=bool, attempts=3, delay=0)) == ["session"]

    def test_returns_last_value_when_never_accepted(self):
        async def read():
            return []

        assert run(read_with_retry(read, accept=bool, attempts=2, delay=0)) == []

    def test_recovers_from_a_failed_read(self):
        outcomes = iter([OperationalError("select", {}, Exception("locked")), "ok"])

        async def read():
            item = next(outcomes)
            if isinstance(item, Exception):
                raise item
            return item

        assert run(read_with_retry(read, attempts=2, delay=0)) == "ok"

    def test_gives_up_after_attempts(self):
        async def read():
            raise OperationalError("select", {}, Exception("connection lost"))

        with pytest.raises(TransientReadInconsistency):
            run(read_with_retry(read, attempts=3, delay=0))

    def test_other_errors_propagate(self):
        async def read():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            run(read_with_retry(read, attempts=3, delay=0))


class GatedProvider(AIProvider):
    """Holds every reply until the test opens the gate."""

    def __init__(self, reply):
        self.reply = reply
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def generate(self, prompt: str) -> str:
        self.started.set()
        await self.gate.wait()
        return self.reply


class TestConcurrentTurns:
    """Sign-in and consent run against a session that may have a chat turn in flight."""

    def test_sign_in_waits_for_running_chat_turn(self):
        """Should keep the chat turn and the resumed turn in one transcript."""
        resume = ScriptedProvider([PROFILE_SUMMARY])

        async def scenario(factory):
            chatting = GatedProvider("Tell me more about your boat.")
            order = []

            async with factory() as db:
                session_id = (await SessionStore(db).create("owner", anon_id="anon-1")).id

            async def chat_turn():
                async with factory() as db:
                    store = SessionStore(db)
                    session = await store.get_by_id(session_id)
                    async with store.locked(session):
                        await run_turn(db, session, chatting, Identity(anon_id="anon-1"), message="My boat is Sea Breeze")
                        order.append("chat")

            async def sign_in():
                await chatting.started.wait()
                async with factory() as db:
                    await consent.record(db, "u1", privacy=True, terms=True, ai_consent=True)
                    linked = await SessionStore(db).link_anonymous_session("anon-1", "u1")
                    order.append("linked")
                    outcome = await consent.after_consent(db, "u1", True, resume)
                    return linked, outcome

            async def open_gate():
                await chatting.started.wait()
                await asyncio.sleep(0.05)
                chatting.gate.set()

            _, (linked, outcome), _ = await asyncio.gather(chat_turn(), sign_in(), open_gate())

            async with factory() as db:
                session = await db.get(OnboardingSession, session_id)
                return order, linked, outcome, session.state, session.conversation

        order, linked, outcome, state, conversation = run_with_factory(scenario)
        assert order == ["chat", "linked"]
        assert [s.id for s in linked] == [outcome.session_id]
        assert state == "profile_pending"
        assert [t["kind"] for t in conversation] == ["user", "assistant", "directive", "assistant"]
        assert conversation[1]["content"] == "Tell me more about your boat."
        assert conversation[-1]["content"] == PROFILE_SUMMARY
        # The resumed turn saw what was said during the chat turn
        assert "My boat is Sea Breeze" in resume.prompts[0]

    def test_second_message_on_a_busy_session(self):
        """Should refuse a second chat turn while one is in flight."""

        async def scenario(factory):
            chatting = GatedProvider("Okay.")

            async with factory() as db:
                session_id = (await SessionStore(db).create("prospect", anon_id="anon-2")).id

            async def turn(db):
                store = SessionStore(db)
                session = await store.get_by_id(session_id)
                async with store.locked(session):
                    await run_turn(db, session, chatting, Identity(anon_id="anon-2"), message="Hi")

            async def second():
                await chatting.started.wait()
                async with factory() as db:
                    try:
                        await turn(db)
                    finally:
                        chatting.gate.set()

            async with factory() as db:
                results = await asyncio.gather(turn(db), second(), return_exceptions=True)
            return results

        first, second = run_with_factory(scenario)
        assert first is None
        assert isinstance(second, SessionBusy)
