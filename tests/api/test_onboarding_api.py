"""Tests for the onboarding API: session lifecycle, step gating, draft and transcript persistence."""

import pytest
from fastapi.testclient import TestClient

from showup.schemas.onboarding import ChallengeDraft

pytestmark = pytest.mark.integration


FULL_DRAFT = {
    "title": "Daily Skincare Ritual",
    "description": "Morning and evening routine",
    "type": "habit",
    "resolution_method": "photo check-in",
    "deposit_amount": 50.0,
    "deposit_recipient": "friend",
    "linked_friend_email": "friend@example.com",
    "frequency": "specific-days",
    "frequency_details": {"days_of_week": [1, 3, 5], "times_per_day": 2, "specific_times": ["07:00", "22:00"]},
    "duration_days": 14,
    "notification_settings": {"enabled": True, "reminder_time": "21:00", "email_enabled": True},
    "guarantors": ["g1@example.com", "g2@example.com"],
    "ai_suggested": True,
}


def _patch(client: TestClient, headers: dict, session_id: str, **fields):
    return client.patch("/api/onboarding/session", json={"session_id": session_id, **fields}, headers=headers)


def _event_types(client: TestClient, headers: dict, session_id: str) -> list[str]:
    response = client.get(f"/api/onboarding/session/{session_id}/events", headers=headers)
    assert response.status_code == 200, response.text
    return [e["event_type"] for e in response.json()]


class TestGetSession:
    """GET /api/onboarding/session"""

    def test_creates_session_at_first_step(self, api_client: TestClient, auth_headers: dict):
        response = api_client.get("/api/onboarding/session", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["terms_accepted"] is False
        assert body["session"]["current_step"] == "terms"
        assert body["session"]["steps_completed"] == []
        assert body["session"]["ai_messages"] == []

    def test_returns_same_active_session(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        again = api_client.get("/api/onboarding/session", headers=auth_headers).json()["session"]
        assert again["id"] == onboarding_session["id"]

    def test_session_started_recorded_once(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        api_client.get("/api/onboarding/session", headers=auth_headers)
        assert _event_types(api_client, auth_headers, onboarding_session["id"]) == ["session_started"]

    def test_requires_auth(self, api_client: TestClient):
        assert api_client.get("/api/onboarding/session").status_code == 401


class TestAcceptTerms:
    """POST /api/onboarding/terms"""

    def test_accept_completes_terms_step(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        response = api_client.post(
            "/api/onboarding/terms", json={"session_id": onboarding_session["id"]}, headers=auth_headers
        )
        assert response.status_code == 200
        body = response.json()
        assert body["terms_version"] == "1.0"
        assert body["session"]["steps_completed"] == ["terms"]
        assert body["session"]["current_step"] == "ai-chat"

        envelope = api_client.get("/api/onboarding/session", headers=auth_headers).json()
        assert envelope["terms_accepted"] is True

        types = _event_types(api_client, auth_headers, onboarding_session["id"])
        assert types == ["session_started", "step_completed", "terms_accepted"]

    def test_repeat_acceptance_keeps_original_stamp(
        self, api_client: TestClient, auth_headers: dict, onboarding_session: dict
    ):
        first = api_client.post(
            "/api/onboarding/terms", json={"session_id": onboarding_session["id"]}, headers=auth_headers
        ).json()
        second = api_client.post(
            "/api/onboarding/terms",
            json={"session_id": onboarding_session["id"], "terms_version": "2.0"},
            headers=auth_headers,
        ).json()
        assert second["accepted_at"] == first["accepted_at"]
        assert second["terms_version"] == "1.0"
        assert _event_types(api_client, auth_headers, onboarding_session["id"]).count("terms_accepted") == 1

    def test_without_session_only_stamps_user(self, api_client: TestClient, auth_headers: dict):
        response = api_client.post("/api/onboarding/terms", json={}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["session"] is None
        me = api_client.get("/api/auth/me", headers=auth_headers).json()
        assert me["terms_accepted_at"] is not None


class TestStepNavigation:
    """PATCH /api/onboarding/session with complete_step / current_step."""

    def test_skip_ahead_rejected(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        _patch(api_client, auth_headers, onboarding_session["id"], complete_step="terms")
        response = _patch(api_client, auth_headers, onboarding_session["id"], current_step="deposit")
        assert response.status_code == 400
        assert response.json()["detail"] == "current_step: Step 'deposit' requires 'resolution' to be completed first"

    def test_rejected_patch_changes_nothing(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        response = _patch(
            api_client,
            auth_headers,
            onboarding_session["id"],
            complete_step="terms",
            current_step="deposit",
            challenge_draft={"title": "Should not persist"},
        )
        assert response.status_code == 400

        session = api_client.get("/api/onboarding/session", headers=auth_headers).json()["session"]
        assert session["steps_completed"] == []
        assert session["current_step"] == "terms"
        assert session["challenge_draft"]["title"] is None
        assert _event_types(api_client, auth_headers, onboarding_session["id"]) == ["session_started"]

    def test_complete_step_idempotent(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        first = _patch(api_client, auth_headers, onboarding_session["id"], complete_step="terms").json()
        second = _patch(api_client, auth_headers, onboarding_session["id"], complete_step="terms").json()
        assert first["steps_completed"] == second["steps_completed"] == ["terms"]
        assert first["current_step"] == second["current_step"] == "ai-chat"
        assert _event_types(api_client, auth_headers, onboarding_session["id"]).count("step_completed") == 1

    def test_skipped_step_recorded(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        _patch(api_client, auth_headers, onboarding_session["id"], complete_step="terms")
        response = _patch(api_client, auth_headers, onboarding_session["id"], complete_step="ai-chat", skipped=True)
        assert response.json()["current_step"] == "challenge-definition"
        assert "step_skipped" in _event_types(api_client, auth_headers, onboarding_session["id"])

    def test_sharing_cannot_be_completed_directly(
        self, api_client: TestClient, auth_headers: dict, onboarding_session: dict
    ):
        response = _patch(api_client, auth_headers, onboarding_session["id"], complete_step="sharing")
        assert response.status_code == 400

    def test_backward_navigation_records_return(
        self, api_client: TestClient, auth_headers: dict, onboarding_session: dict
    ):
        sid = onboarding_session["id"]
        _patch(api_client, auth_headers, sid, complete_step="terms")
        _patch(api_client, auth_headers, sid, complete_step="ai-chat")
        response = _patch(api_client, auth_headers, sid, current_step="terms", time_spent_seconds=12)
        assert response.status_code == 200
        assert response.json()["current_step"] == "terms"

        events = api_client.get(f"/api/onboarding/session/{sid}/events", headers=auth_headers).json()
        started = [e for e in events if e["event_type"] == "step_started"][-1]
        assert started["step_name"] == "terms"
        assert started["event_data"] == {"previous_step": "challenge-definition", "previous_time_spent": 12}
        assert started["time_spent_seconds"] == 12
        assert events[-1]["event_type"] == "step_returned"

    def test_unknown_step_rejected(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        response = _patch(api_client, auth_headers, onboarding_session["id"], current_step="checkout")
        assert response.status_code == 400
        assert response.json()["detail"].startswith("current_step:")


class TestDraftAndTranscript:
    """Draft merge and transcript mirror."""

    def test_draft_round_trip(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        response = _patch(api_client, auth_headers, onboarding_session["id"], challenge_draft=FULL_DRAFT)
        assert response.status_code == 200

        stored = api_client.get("/api/onboarding/session", headers=auth_headers).json()["session"]["challenge_draft"]
        assert ChallengeDraft.model_validate(stored) == ChallengeDraft.model_validate(FULL_DRAFT)

    def test_draft_changes_recorded(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        sid = onboarding_session["id"]
        _patch(api_client, auth_headers, sid, challenge_draft={"deposit_amount": 25, "guarantors": ["a@example.com"]})
        _patch(api_client, auth_headers, sid, challenge_draft={"deposit_amount": 25, "guarantors": []})

        events = api_client.get(f"/api/onboarding/session/{sid}/events", headers=auth_headers).json()
        types = [e["event_type"] for e in events]
        assert types.count("deposit_amount_changed") == 1
        assert types.count("guarantor_added") == 1
        removed = [e for e in events if e["event_type"] == "guarantor_removed"]
        assert removed[0]["event_data"] == {"guarantor_count": 0}

    def test_invalid_draft_type_rejected(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        response = _patch(api_client, auth_headers, onboarding_session["id"], challenge_draft={"type": "sorcery"})
        assert response.status_code == 400

    def test_transcript_is_append_only(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        sid = onboarding_session["id"]
        first = {"id": "msg_1", "role": "user", "content": "hello", "timestamp": "2026-01-01T00:00:00Z"}
        second = {"id": "msg_2", "role": "assistant", "content": "hi", "timestamp": "2026-01-01T00:00:01Z"}

        assert _patch(api_client, auth_headers, sid, ai_messages=[first]).status_code == 200
        assert _patch(api_client, auth_headers, sid, ai_messages=[first, second]).status_code == 200

        rewritten = {**first, "content": "edited"}
        response = _patch(api_client, auth_headers, sid, ai_messages=[rewritten, second])
        assert response.status_code == 400
        assert response.json()["detail"].startswith("ai_messages:")

        dropped = _patch(api_client, auth_headers, sid, ai_messages=[second])
        assert dropped.status_code == 400


class TestOwnershipAndLifecycle:
    def test_foreign_session_not_found(
        self, api_client: TestClient, register_user, auth_headers: dict, onboarding_session: dict
    ):
        _, other_headers = register_user("other@example.com")
        response = _patch(api_client, other_headers, onboarding_session["id"], complete_step="terms")
        assert response.status_code == 404
        assert response.json()["detail"] == "Session not found"

        events = api_client.get(f"/api/onboarding/session/{onboarding_session['id']}/events", headers=other_headers)
        assert events.status_code == 404

    def test_malformed_session_id(self, api_client: TestClient, auth_headers: dict):
        response = api_client.post("/api/onboarding/session/not-a-uuid/abandon", headers=auth_headers)
        assert response.status_code == 404

    def test_abandon_then_new_session(self, api_client: TestClient, auth_headers: dict, onboarding_session: dict):
        sid = onboarding_session["id"]
        response = api_client.post(f"/api/onboarding/session/{sid}/abandon", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["abandoned_at"] is not None

        closed = _patch(api_client, auth_headers, sid, complete_step="terms")
        assert closed.status_code == 400
        assert closed.json()["detail"] == "session_id: session is already completed or abandoned"

        fresh = api_client.get("/api/onboarding/session", headers=auth_headers).json()["session"]
        assert fresh["id"] != sid
        assert _event_types(api_client, auth_headers, sid)[-1] == "session_abandoned"


class TestMetrics:
    """GET /api/onboarding/metrics"""

    def test_funnel_counts(self, api_client: TestClient, register_user):
        _, a = register_user("a@example.com")
        _, b = register_user("b@example.com")
        sid_a = api_client.get("/api/onboarding/session", headers=a).json()["session"]["id"]
        sid_b = api_client.get("/api/onboarding/session", headers=b).json()["session"]["id"]
        api_client.post(f"/api/onboarding/session/{sid_b}/abandon", headers=b)
        _patch(api_client, a, sid_a, complete_step="terms")
        _patch(api_client, a, sid_a, current_step="ai-chat")

        response = api_client.get("/api/onboarding/metrics", headers=a)
        assert response.status_code == 200
        metrics = response.json()
        assert metrics["total_sessions"] == 2
        assert metrics["completed_sessions"] == 0
        assert metrics["abandoned_sessions"] == 1
        assert metrics["completion_rate"] == 0.0
        assert metrics["avg_completion_seconds"] is None
        assert metrics["popular_challenge_types"] == []
