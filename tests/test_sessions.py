"""
Tests for the session store, linking and the redirect context built from it.
"""

import pytest

from deckhand.core.errors import DeckhandError
from deckhand.models.profile import Profile, Vessel
from deckhand.orchestrator.state import Event, transition
from deckhand.routing.context import build_redirect_context, decide_for_user
from deckhand.services.sessions import SessionStore

from conftest import run_with_db


class TestCreate:
    def test_anonymous_session_starts_at_signup(self):
        async def scenario(db):
            return await SessionStore(db).create("owner", anon_id="a1")

        session = run_with_db(scenario)
        assert session.state == "signup_pending"
        assert session.user_id is None
        assert session.conversation == []

    def test_signed_in_session_starts_at_consent(self):
        async def scenario(db):
            return await SessionStore(db).create("prospect", user_id="u1")

        assert run_with_db(scenario).state == "consent_pending"

    def test_one_open_session_per_role(self):
        """Should refuse a second open session for the same user and role."""

        async def scenario(db):
            store = SessionStore(db)
            await store.create("owner", user_id="u1")
            await store.create("prospect", user_id="u1")
            with pytest.raises(DeckhandError):
                await store.create("owner", user_id="u1")

        run_with_db(scenario)

    def test_terminal_session_allows_a_new_one(self):
        async def scenario(db):
            store = SessionStore(db)
            first = await store.create("prospect", user_id="u1")
            await transition(store, first, Event.CONSENT_ACCEPTED)
            await transition(store, first, Event.PROFILE_SAVED)
            second = await store.get_or_create("prospect", user_id="u1")
            return first, second

        first, second = run_with_db(scenario)
        assert first.state == "completed"
        assert second.id != first.id
        assert second.state == "consent_pending"

    def test_get_or_create_reuses_open_session(self):
        async def scenario(db):
            store = SessionStore(db)
            a = await store.get_or_create("owner", anon_id="a1")
            b = await store.get_or_create("owner", anon_id="a1")
            return a.id, b.id

        a, b = run_with_db(scenario)
        assert a == b


class TestGet:
    def test_user_session_wins_over_anonymous(self):
        async def scenario(db):
            store = SessionStore(db)
            anon = await store.create("owner", anon_id="a1")
            mine = await store.create("owner", user_id="u1")
            found = await store.get("owner", user_id="u1", anon_id="a1")
            return found.id, mine.id, anon.id

        found, mine, _ = run_with_db(scenario)
        assert found == mine

    def test_falls_back_to_anonymous(self):
        async def scenario(db):
            store = SessionStore(db)
            anon = await store.create("owner", anon_id="a1")
            found = await store.get("owner", user_id="u1", anon_id="a1")
            return found.id, anon.id

        found, anon = run_with_db(scenario)
        assert found == anon

    def test_someone_elses_anonymous_session_is_hidden(self):
        async def scenario(db):
            store = SessionStore(db)
            await store.create("owner", anon_id="a1")
            await store.link_anonymous_session("a1", "u-other")
            return await store.get("owner", user_id="u1", anon_id="a1")

        assert run_with_db(scenario) is None

    def test_role_is_part_of_the_key(self):
        async def scenario(db):
            store = SessionStore(db)
            await store.create("owner", anon_id="a1")
            return await store.get("prospect", anon_id="a1")

        assert run_with_db(scenario) is None

    def test_nothing_to_look_up(self):
        async def scenario(db):
            return await SessionStore(db).get("owner")

        assert run_with_db(scenario) is None


class TestLink:
    def test_link_applies_signed_up(self):
        """Should attach the anonymous session to the user and move to consent_pending."""

        async def scenario(db):
            store = SessionStore(db)
            session = await store.create("owner", anon_id="a1")
            linked = await store.link_anonymous_session("a1", "u1", email="ana@example.com")
            return session.id, linked

        session_id, linked = run_with_db(scenario)
        assert [s.id for s in linked] == [session_id]
        assert linked[0].user_id == "u1"
        assert linked[0].email == "ana@example.com"
        assert linked[0].state == "consent_pending"

    def test_link_is_idempotent(self):
        async def scenario(db):
            store = SessionStore(db)
            await store.create("owner", anon_id="a1")
            await store.link_anonymous_session("a1", "u1")
            return await store.link_anonymous_session("a1", "u1")

        assert run_with_db(scenario) == []

    def test_existing_open_session_wins(self):
        """Should leave the anonymous session unlinked when the user already has one."""

        async def scenario(db):
            store = SessionStore(db)
            existing = await store.create("owner", user_id="u1")
            anon = await store.create("owner", anon_id="a1")
            linked = await store.link_anonymous_session("a1", "u1")
            pending = await store.pending_for_user("u1")
            return linked, [s.id for s in pending], existing.id, anon

        linked, pending, existing_id, anon = run_with_db(scenario)
        assert linked == []
        assert pending == [existing_id]
        assert anon.user_id is None

    def test_link_by_role(self):
        async def scenario(db):
            store = SessionStore(db)
            await store.create("owner", anon_id="a1")
            await store.create("prospect", anon_id="a1")
            return await store.link_anonymous_session("a1", "u1", role="prospect")

        linked = run_with_db(scenario)
        assert [s.role for s in linked] == ["prospect"]


class TestRedirectContext:
    def test_context_from_store(self):
        async def scenario(db):
            store = SessionStore(db)
            session = await store.create("owner", user_id="u1")
            await store.mark_profile_completion_triggered(session)
            db.add(Profile(user_id="u1", username="ana", roles=["crew"]))
            await db.commit()
            return await build_redirect_context(db, "u1", referral_source="prospect")

        ctx = run_with_db(scenario)
        assert ctx.has_pending_owner_session
        assert not ctx.has_pending_prospect_session
        assert ctx.owner_profile_completion_triggered
        assert ctx.profile_roles == ("crew",)
        assert ctx.profile_has_username
        assert not ctx.has_owned_asset
        assert ctx.referral_source == "prospect"

    def test_anonymous_context(self):
        async def scenario(db):
            return await build_redirect_context(db, None, referral_source="owner")

        ctx = run_with_db(scenario)
        assert ctx.user_id is None
        assert ctx.referral_source == "owner"

    def test_decision_for_established_owner(self):
        async def scenario(db):
            db.add(Profile(user_id="u1", username="ana", roles=["owner"]))
            db.add(Vessel(owner_id="u1", name="Sea Breeze", details={}))
            await db.commit()
            return await decide_for_user(db, "u1")

        decision = run_with_db(scenario)
        assert decision.path == "/owner/boats"
        assert decision.priority == 4

    def test_decision_after_link_sees_the_session(self):
        """Should route a just-linked user back to onboarding."""

        async def scenario(db):
            store = SessionStore(db)
            await store.create("prospect", anon_id="a1")
            await store.link_anonymous_session("a1", "u1")
            return await decide_for_user(db, "u1", expect_session=True)

        decision = run_with_db(scenario)
        assert decision.path == "/welcome/crew"
        assert decision.priority == 1

    def test_triggered_completion_outlives_the_open_session(self):
        """Should route back to profile completion once the session itself is done."""

        async def scenario(db):
            store = SessionStore(db)
            session = await store.create("owner", user_id="u1")
            for event in (Event.CONSENT_ACCEPTED, Event.PROFILE_SAVED, Event.VESSEL_CREATED):
                session = await transition(store, session, event)
            session = await store.mark_profile_completion_triggered(session)
            session = await transition(store, session, Event.JOURNEY_CREATED)
            db.add(Profile(user_id="u1", username="ana", roles=["owner"]))
            db.add(Vessel(owner_id="u1", name="Sea Breeze", details={}))
            await db.commit()
            ctx = await build_redirect_context(db, "u1")
            return session.state, ctx, await decide_for_user(db, "u1")

        state, ctx, decision = run_with_db(scenario)
        assert state == "completed"
        assert not ctx.has_pending_owner_session
        assert ctx.owner_profile_completion_triggered
        assert decision.priority == 2
        assert decision.url == "/welcome/owner?profile_completion=true"

    def test_saved_profile_clears_the_trigger(self):
        async def scenario(db):
            store = SessionStore(db)
            session = await store.create("prospect", user_id="u1")
            session = await transition(store, session, Event.CONSENT_ACCEPTED)
            session = await store.mark_profile_completion_triggered(session)
            await transition(store, session, Event.PROFILE_SAVED)
            db.add(Profile(user_id="u1", username="ana", roles=["crew"]))
            await db.commit()
            return await decide_for_user(db, "u1")

        decision = run_with_db(scenario)
        assert decision.priority == 4
        assert decision.path == "/crew"

    def test_new_user_without_anything(self):
        async def scenario(db):
            return await decide_for_user(db, "u-new", expect_session=True)

        decision = run_with_db(scenario)
        assert decision.priority == 5
        assert decision.path == "/crew"
