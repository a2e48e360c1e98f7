"""
End-to-end tests through the HTTP API.

Each test gets its own SQLite file and a fresh app. FF_USE_AUTH0=false, so
any Authorization header resolves to the dev user and no header means an
anonymous caller.
"""

import pytest
from fastapi.testclient import TestClient

from deckhand.core import database
from deckhand.core.config import get_settings
from deckhand.core.dependencies import get_provider_dep
from deckhand.factory import create_app

from conftest import tool_call

AUTH = {"Authorization": "Bearer dev-token"}

PROFILE_SUMMARY = "Here's your profile:\n- Name: Ana Lima\n- Experience: 3\nDoes this look right?"


@pytest.fixture
def client(tmp_path, monkeypatch, provider):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'deckhand.db'}")
    get_settings.cache_clear()
    database._engine = None
    database._session_factory = None

    app = create_app()
    app.dependency_overrides[get_provider_dep] = lambda: provider
    with TestClient(app) as c:
        yield c


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "deckhand"

    def test_auth_config_in_dev_mode(self, client):
        assert client.get("/auth/config").json()["auth_enabled"] is False


class TestAnonymousChat:
    def test_first_message_creates_session(self, client, provider):
        """Should start an anonymous session and hand back its anon_id."""
        provider.responses = ["Welcome aboard! What's your name?"]
        resp = client.post("/v1/onboarding/prospect/chat", json={"message": "Hi there"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["anon_id"]
        assert body["state"] == "signup_pending"
        assert body["reply"] == "Welcome aboard! What's your name?"

        again = client.post(
            "/v1/onboarding/prospect/chat",
            json={"message": "I'm Ana", "anon_id": body["anon_id"]},
        )
        assert again.json()["session_id"] == body["session_id"]

    def test_session_view_hides_internal_turns(self, client, provider):
        provider.responses = ["Hello!"]
        anon_id = client.post("/v1/onboarding/owner/chat", json={"message": "Hi"}).json()["anon_id"]

        resp = client.get("/v1/onboarding/owner/session", params={"anon_id": anon_id})
        assert resp.status_code == 200
        body = resp.json()
        assert body["linked"] is False
        assert [m["kind"] for m in body["messages"]] == ["user", "assistant"]

    def test_missing_session(self, client):
        resp = client.get("/v1/onboarding/owner/session", params={"anon_id": "nope"})
        assert resp.status_code == 404

    def test_unknown_role(self, client):
        resp = client.post("/v1/onboarding/admin/chat", json={"message": "Hi"})
        assert resp.status_code == 422


class TestSignupFlow:
    def _chat_then_sign_in(self, client, provider, role="prospect"):
        provider.responses = ["Nice to meet you, Ana!"]
        anon_id = client.post(
            f"/v1/onboarding/{role}/chat",
            json={"message": "Hi, I'm Ana Lima and I've sailed for ten years"},
        ).json()["anon_id"]
        resp = client.post("/v1/auth/complete", json={"anon_id": anon_id}, headers=AUTH)
        assert resp.status_code == 200
        return anon_id, resp.json()

    def test_auth_complete_links_and_redirects_to_onboarding(self, client, provider):
        """Should link the session and send the user back to finish onboarding."""
        _, body = self._chat_then_sign_in(client, provider)
        assert len(body["linked_session_ids"]) == 1
        assert body["url"] == "/welcome/crew"
        assert body["priority"] == 1

    def test_consent_with_ai_resumes_and_completes(self, client, provider):
        self._chat_then_sign_in(client, provider)

        provider.responses = [PROFILE_SUMMARY]
        resp = client.post(
            "/v1/consent",
            json={"privacy_policy": True, "terms": True, "ai_processing": True},
            headers=AUTH,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["first_completion"] is True
        assert body["redirect"] == "/welcome/crew?profile_completion=true"
        assert body["reply"] == PROFILE_SUMMARY

        session = client.get("/v1/onboarding/prospect/session", headers=AUTH).json()
        assert session["state"] == "profile_pending"
        assert session["profile_completion_triggered"] is True

        provider.responses = [tool_call("update_profile", {"full_name": "Ana Lima", "experience_level": 3}), "All set!"]
        resp = client.post("/v1/onboarding/prospect/chat", json={"message": "yes"}, headers=AUTH)
        body = resp.json()
        assert body["state"] == "completed"
        assert body["created"] == {"profile_saved": True}

        redirect = client.get("/v1/redirect", headers=AUTH).json()
        assert redirect["url"] == "/crew"
        assert redirect["reason"] == "established_crew"

    def test_consent_without_ai_discards_session(self, client, provider):
        """Should archive and delete the pre-signup chat and land on /."""
        self._chat_then_sign_in(client, provider, role="owner")

        resp = client.post(
            "/v1/consent",
            json={"privacy_policy": True, "terms": True, "ai_processing": False},
            headers=AUTH,
        )
        body = resp.json()
        assert body["redirect"] == "/"
        assert body["reply"] is None

        assert client.get("/v1/onboarding/owner/session", headers=AUTH).status_code == 404

    def test_second_consent_post_does_not_rerun(self, client, provider):
        self._chat_then_sign_in(client, provider)
        provider.responses = [PROFILE_SUMMARY]
        payload = {"privacy_policy": True, "terms": True, "ai_processing": True}
        client.post("/v1/consent", json=payload, headers=AUTH)
        prompts_before = len(provider.prompts)

        body = client.post("/v1/consent", json=payload, headers=AUTH).json()
        assert body["first_completion"] is False
        assert body["redirect"] is None
        assert len(provider.prompts) == prompts_before

    def test_consent_status(self, client):
        before = client.get("/v1/consent", headers=AUTH).json()
        assert before["mandatory_complete"] is False
        client.post("/v1/consent", json={"privacy_policy": True, "terms": True}, headers=AUTH)
        after = client.get("/v1/consent", headers=AUTH).json()
        assert after["mandatory_complete"] is True
        assert after["ai_consent"] is False


class TestGates:
    def test_signed_in_chat_requires_consent(self, client):
        """Should answer 403 until the mandatory items are accepted."""
        resp = client.post("/v1/onboarding/owner/chat", json={"message": "Hi"}, headers=AUTH)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "consent_required"

    def test_signed_in_chat_after_consent(self, client, provider):
        client.post(
            "/v1/consent",
            json={"privacy_policy": True, "terms": True, "ai_processing": True},
            headers=AUTH,
        )
        provider.responses = ["Let's start with your profile. What's your full name?"]
        body = client.post("/v1/onboarding/owner/chat", json={"message": "Hi"}, headers=AUTH).json()
        assert body["state"] == "profile_pending"

    def test_profile_completion_without_session(self, client):
        assert client.post("/v1/onboarding/owner/profile-completion", headers=AUTH).status_code == 404

    def test_redirect_for_new_user(self, client):
        body = client.get("/v1/redirect", headers=AUTH).json()
        assert body["priority"] == 5
        assert body["path"] == "/crew"

    def test_redirect_with_referral(self, client):
        body = client.get("/v1/redirect", params={"referral_source": "owner"}, headers=AUTH).json()
        assert body["url"] == "/welcome/owner?profile_completion=true"

