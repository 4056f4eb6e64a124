"""Tests for Web3EscrowClient receipt handling with the chain calls mocked out."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from showup.integrations.escrow import MAX_UINT256, EscrowChallengeParams, Web3EscrowClient

pytestmark = pytest.mark.unit

PARAMS = EscrowChallengeParams(
    challenge_id="challenge_1_abcd",
    payer_email="founder@example.com",
    amount_usd=Decimal("25"),
    duration_days=10,
    guarantor_emails=["buddy@example.com"],
    provider_session_id="cs_1",
)


def _receipt(status: int) -> dict:
    return {"status": status, "transactionHash": b"\xab" * 32, "blockNumber": 42}


def _client() -> Web3EscrowClient:
    settings = MagicMock()
    settings.resolved_chain_id = 80002
    settings.escrow_contract_address = "0x" + "22" * 20
    settings.usdc_contract_address = "0x" + "33" * 20
    settings.platform_wallet_private_key = "0x" + "11" * 32
    settings.alchemy_api_key = ""
    return Web3EscrowClient(settings)


def _web3(allowance: int) -> MagicMock:
    w3 = MagicMock()
    w3.eth.contract.return_value.functions.allowance.return_value.call = AsyncMock(return_value=allowance)
    return w3


class TestCreateChallenge:
    async def test_mined_transaction_succeeds(self):
        with (
            patch.object(Web3EscrowClient, "_web3", return_value=_web3(MAX_UINT256)),
            patch.object(Web3EscrowClient, "_transact", AsyncMock(return_value=_receipt(1))),
        ):
            result = await _client().create_challenge(PARAMS)

        assert result.success is True
        assert result.block_number == 42
        assert result.transaction_hash == "0x" + "ab" * 32

    async def test_reverted_transaction_is_a_failure(self):
        with (
            patch.object(Web3EscrowClient, "_web3", return_value=_web3(MAX_UINT256)),
            patch.object(Web3EscrowClient, "_transact", AsyncMock(return_value=_receipt(0))),
        ):
            result = await _client().create_challenge(PARAMS)

        assert result.success is False
        assert result.on_chain_id is None
        assert result.error.startswith("createChallenge transaction reverted")

    async def test_reverted_approval_stops_before_create(self):
        transact = AsyncMock(return_value=_receipt(0))
        with (
            patch.object(Web3EscrowClient, "_web3", return_value=_web3(0)),
            patch.object(Web3EscrowClient, "_transact", transact),
        ):
            result = await _client().create_challenge(PARAMS)

        assert result.success is False
        assert result.error.startswith("approve transaction reverted")
        assert transact.await_count == 1

    async def test_missing_wallet(self):
        client = _client()
        client.private_key = ""
        result = await client.create_challenge(PARAMS)
        assert result.success is False
        assert result.error == "Platform wallet not configured"
