"""End-to-end onboarding: register through deposit settlement over the HTTP API."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from showup.db.models.challenge import Challenge

pytestmark = pytest.mark.integration


def _patch(client: TestClient, headers: dict, session_id: str, **fields) -> dict:
    response = client.patch("/api/onboarding/session", json={"session_id": session_id, **fields}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestOnboardingFlow:
    async def test_register_to_pending_challenge(self, api_client: TestClient, session_factory):
        """Register, accept terms, skip the chat, define the challenge, finalize."""
        registered = api_client.post(
            "/api/auth/register", json={"email": "walker@example.com", "password": "Valid1Pass"}
        )
        assert registered.status_code == 201
        headers = {"Authorization": f"Bearer {registered.json()['access_token']}"}

        envelope = api_client.get("/api/onboarding/session", headers=headers).json()
        assert envelope["terms_accepted"] is False
        sid = envelope["session"]["id"]

        terms = api_client.post("/api/onboarding/terms", json={"session_id": sid}, headers=headers).json()
        assert terms["session"]["current_step"] == "ai-chat"

        session = _patch(api_client, headers, sid, complete_step="ai-chat", skipped=True)
        assert session["current_step"] == "challenge-definition"

        draft = {
            "title": "Daily Walk",
            "description": "20 min walk",
            "deposit_amount": 25,
            "guarantors": ["buddy@example.com"],
        }
        session = _patch(api_client, headers, sid, challenge_draft=draft, complete_step="challenge-definition")
        assert session["current_step"] == "resolution"
        for step in ("resolution", "deposit", "notifications", "activity-rate"):
            session = _patch(api_client, headers, sid, complete_step=step)
        assert session["current_step"] == "sharing"

        completed = api_client.post("/api/onboarding/complete", json={"session_id": sid}, headers=headers)
        assert completed.status_code == 201
        body = completed.json()
        assert body["status"] == "pending"
        assert body["payment_method"] == "stripe"
        assert body["checkout_data"] == {
            "challenge_id": body["challenge_id"],
            "amount": 25.0,
            "title": "Daily Walk",
            "duration": 14,
            "guarantors": ["buddy@example.com"],
        }

        me = api_client.get("/api/auth/me", headers=headers).json()
        assert me["onboarding_completed_at"] is not None
        assert me["terms_accepted_at"] is not None

        async with session_factory() as db:
            challenge = (
                await db.execute(select(Challenge).where(Challenge.challenge_id == body["challenge_id"]))
            ).scalar_one()
        assert challenge.status == "pending"
        assert challenge.user_email == "walker@example.com"

        events = api_client.get(f"/api/onboarding/session/{sid}/events", headers=headers).json()
        types = [e["event_type"] for e in events]
        assert types[0] == "session_started"
        assert types[-1] == "session_completed"
        assert "step_skipped" in types
        assert "terms_accepted" in types

        # A completed session is closed; the next visit starts fresh
        fresh = api_client.get("/api/onboarding/session", headers=headers).json()
        assert fresh["session"]["id"] != sid
        assert fresh["terms_accepted"] is True

    async def test_finalized_challenge_paid_with_test_payment(self, api_client: TestClient, fake_escrow, session_factory):
        """Finalize, then run the simulated payment through settlement."""
        registered = api_client.post(
            "/api/auth/register", json={"email": "payer@example.com", "password": "Valid1Pass"}
        ).json()
        headers = {"Authorization": f"Bearer {registered['access_token']}"}
        sid = api_client.get("/api/onboarding/session", headers=headers).json()["session"]["id"]

        created = api_client.post(
            "/api/onboarding/complete",
            json={
                "session_id": sid,
                "challenge_draft": {
                    "title": "Hydration Hero",
                    "description": "8 glasses a day",
                    "deposit_amount": 25,
                    "guarantors": ["buddy@example.com"],
                    "duration_days": 7,
                },
            },
            headers=headers,
        ).json()
        checkout = created["checkout_data"]

        paid = api_client.post(
            "/api/stripe/test-payment",
            json={"amount": checkout["amount"], "challenge_id": checkout["challenge_id"]},
            headers=headers,
        )
        assert paid.status_code == 200
        assert paid.json()["settlement_status"] == "settled"
        assert fake_escrow.created[0].duration_days == 7
        assert fake_escrow.created[0].payer_email == "payer@example.com"

        async with session_factory() as db:
            challenge = (
                await db.execute(select(Challenge).where(Challenge.challenge_id == checkout["challenge_id"]))
            ).scalar_one()
        assert challenge.status == "settled"
        assert challenge.payment_session_id == paid.json()["session_id"]
