"""Tests for SettlementService: claim-once idempotency, degradation, reconciliation."""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update

from showup.db.models.challenge import Challenge
from showup.db.models.payment_settlement import PaymentSettlement
from showup.db.models.user import User
from showup.integrations.escrow import EscrowChallengeParams, EscrowResult, FakeEscrowClient
from showup.services.settlement_service import SettlementService, parse_duration, parse_guarantors

pytestmark = pytest.mark.integration


def _metadata(challenge_id: str = "", **overrides) -> dict:
    return {
        "type": "challenge_deposit",
        "challengeId": challenge_id,
        "challengeTitle": "Daily Walk",
        "challengeDuration": "10",
        "guarantors": json.dumps(["buddy@example.com"]),
        "metadataUri": "ipfs://meta",
        **overrides,
    }


async def _seed_challenge(session_factory, challenge_id: str = "challenge_1_abcd") -> str:
    async with session_factory() as db, db.begin():
        user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", password_hash="x")
        db.add(user)
        await db.flush()
        db.add(
            Challenge(
                challenge_id=challenge_id,
                user_id=user.id,
                user_email=user.email,
                title="Daily Walk",
                description="20 min walk",
                duration_days=10,
                amount_usd=Decimal("25"),
                guarantors=["buddy@example.com"],
                status="payment_pending",
            )
        )
    return challenge_id


async def _settle(service: SettlementService, session_id: str, metadata: dict):
    return await service.settle_payment(
        provider_session_id=session_id,
        metadata=metadata,
        amount_usd=Decimal("25"),
        payer_email="founder@example.com",
        payment_intent_id="pi_1",
    )


async def _age_claim(session_factory, session_id: str) -> None:
    """Push a claim's last update past the settlement lease."""
    async with session_factory() as db, db.begin():
        await db.execute(
            update(PaymentSettlement)
            .where(PaymentSettlement.provider_session_id == session_id)
            .values(updated_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )


class RaisingEscrow(FakeEscrowClient):
    """Escrow whose RPC calls blow up."""

    async def is_deployed(self) -> bool:
        raise ConnectionError("rpc down")


class CrashingEscrow(FakeEscrowClient):
    async def create_challenge(self, params: EscrowChallengeParams) -> EscrowResult:
        self.created.append(params)
        raise RuntimeError("nonce too low")


class TestMetadataParsing:
    def test_guarantors_json(self):
        assert parse_guarantors('["a@x.io", "b@x.io"]') == ["a@x.io", "b@x.io"]

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"a": 1}', "42"])
    def test_malformed_guarantors_empty(self, raw):
        assert parse_guarantors(raw) == []

    def test_duration(self):
        assert parse_duration("14") == 14

    @pytest.mark.parametrize("raw", [None, "", "soon", "0", "-3"])
    def test_malformed_duration_defaults(self, raw):
        assert parse_duration(raw) == 30


class TestSettlePayment:
    async def test_settles_and_records(self, session_factory):
        escrow = FakeEscrowClient()
        challenge_id = await _seed_challenge(session_factory)
        outcome = await _settle(SettlementService(escrow, session_factory), "cs_1", _metadata(challenge_id))

        assert outcome.status == "settled"
        assert outcome.escrow.success is True
        params = escrow.created[0]
        assert params.amount_usd == Decimal("25")
        assert params.metadata_uri == "ipfs://meta"

        async with session_factory() as db:
            row = await db.get(PaymentSettlement, "cs_1")
            challenge = (await db.execute(select(Challenge).where(Challenge.challenge_id == challenge_id))).scalar_one()
        assert row.status == "settled"
        assert row.attempts == 1
        assert row.on_chain_id == outcome.escrow.on_chain_id
        assert challenge.status == "settled"
        assert challenge.transaction_hash == outcome.escrow.transaction_hash

    async def test_not_a_deposit_ignored(self, session_factory):
        escrow = FakeEscrowClient()
        outcome = await _settle(SettlementService(escrow, session_factory), "cs_2", _metadata(type="other"))
        assert outcome.status == "ignored"
        assert escrow.created == []
        async with session_factory() as db:
            assert await db.get(PaymentSettlement, "cs_2") is None

    async def test_duplicate_notification_single_create(self, session_factory):
        escrow = FakeEscrowClient()
        service = SettlementService(escrow, session_factory)

        first = await _settle(service, "cs_dup", _metadata())
        second = await _settle(service, "cs_dup", _metadata())

        assert first.status == "settled"
        assert second.status == "duplicate"
        assert len(escrow.created) == 1

    async def test_concurrent_duplicates_single_create(self, session_factory):
        escrow = FakeEscrowClient()
        service = SettlementService(escrow, session_factory)

        outcomes = await asyncio.gather(*(_settle(service, "cs_race", _metadata()) for _ in range(3)))

        assert sorted(o.status for o in outcomes).count("duplicate") == 2
        assert len(escrow.created) == 1
        async with session_factory() as db:
            count = await db.scalar(select(func.count()).select_from(PaymentSettlement))
        assert count == 1

    async def test_not_deployed_defers(self, session_factory):
        challenge_id = await _seed_challenge(session_factory)
        escrow = FakeEscrowClient(deployed=False)
        outcome = await _settle(SettlementService(escrow, session_factory), "cs_3", _metadata(challenge_id))

        assert outcome.status == "deferred"
        assert escrow.created == []
        async with session_factory() as db:
            row = await db.get(PaymentSettlement, "cs_3")
            challenge = (await db.execute(select(Challenge).where(Challenge.challenge_id == challenge_id))).scalar_one()
        assert row.status == "deferred"
        assert row.last_error == "escrow contract not deployed"
        assert challenge.status == "escrow_pending"

    async def test_unreachable_chain_defers(self, session_factory):
        outcome = await _settle(SettlementService(RaisingEscrow(), session_factory), "cs_4", _metadata())
        assert outcome.status == "deferred"
        async with session_factory() as db:
            row = await db.get(PaymentSettlement, "cs_4")
        assert "rpc down" in row.last_error

    async def test_create_exception_marks_failed(self, session_factory):
        challenge_id = await _seed_challenge(session_factory)
        outcome = await _settle(SettlementService(CrashingEscrow(), session_factory), "cs_5", _metadata(challenge_id))
        assert outcome.status == "failed"
        assert "nonce too low" in outcome.escrow.error
        async with session_factory() as db:
            challenge = (await db.execute(select(Challenge).where(Challenge.challenge_id == challenge_id))).scalar_one()
        assert challenge.status == "failed"

    async def test_malformed_metadata_uses_defaults(self, session_factory):
        escrow = FakeEscrowClient()
        metadata = _metadata(guarantors="oops", challengeDuration="forever")
        await _settle(SettlementService(escrow, session_factory), "cs_6", metadata)
        assert escrow.created[0].guarantor_emails == []
        assert escrow.created[0].duration_days == 30


class TestReconcile:
    async def test_failed_rows_retried_until_settled(self, session_factory):
        escrow = FakeEscrowClient(fail_with="execution reverted")
        service = SettlementService(escrow, session_factory)
        await _settle(service, "cs_a", _metadata())
        await _settle(service, "cs_b", _metadata())

        escrow.fail_with = None
        tally = await service.reconcile_pending()

        assert tally == {"attempted": 2, "settled": 2, "deferred": 0, "failed": 0}
        assert len(escrow.created) == 4
        async with session_factory() as db:
            rows = (await db.execute(select(PaymentSettlement))).scalars().all()
        assert {r.status for r in rows} == {"settled"}
        assert {r.attempts for r in rows} == {2}

    async def test_limit_respected(self, session_factory):
        escrow = FakeEscrowClient(deployed=False)
        service = SettlementService(escrow, session_factory)
        for i in range(3):
            await _settle(service, f"cs_{i}", _metadata())

        tally = await service.reconcile_pending(limit=2)
        assert tally["attempted"] == 2
        assert tally["deferred"] == 2

    async def test_crashed_attempt_retried_after_lease(self, session_factory):
        escrow = FakeEscrowClient()
        service = SettlementService(escrow, session_factory)
        challenge_id = await _seed_challenge(session_factory)

        with patch.object(SettlementService, "_attempt", AsyncMock(side_effect=RuntimeError("worker killed"))):
            with pytest.raises(RuntimeError):
                await _settle(service, "cs_crash", _metadata(challenge_id))

        # Redelivery stays deduplicated; the claim row is the only record
        assert (await _settle(service, "cs_crash", _metadata(challenge_id))).status == "duplicate"
        assert (await service.reconcile_pending())["attempted"] == 0

        await _age_claim(session_factory, "cs_crash")
        tally = await service.reconcile_pending()

        assert tally == {"attempted": 1, "settled": 1, "deferred": 0, "failed": 0}
        assert len(escrow.created) == 1
        async with session_factory() as db:
            row = await db.get(PaymentSettlement, "cs_crash")
            challenge = (await db.execute(select(Challenge).where(Challenge.challenge_id == challenge_id))).scalar_one()
        assert row.status == "settled"
        assert challenge.status == "settled"

    async def test_fresh_processing_claim_not_retried(self, session_factory):
        escrow = FakeEscrowClient()
        service = SettlementService(escrow, session_factory)
        with patch.object(SettlementService, "_attempt", AsyncMock(side_effect=RuntimeError("worker killed"))):
            with pytest.raises(RuntimeError):
                await _settle(service, "cs_inflight", _metadata())

        tally = await service.reconcile_pending()

        assert tally["attempted"] == 0
        assert escrow.created == []
        async with session_factory() as db:
            assert (await db.get(PaymentSettlement, "cs_inflight")).status == "processing"

    async def test_settled_rows_untouched(self, session_factory):
        escrow = FakeEscrowClient()
        service = SettlementService(escrow, session_factory)
        await _settle(service, "cs_done", _metadata())

        tally = await service.reconcile_pending()
        assert tally["attempted"] == 0
        assert len(escrow.created) == 1
