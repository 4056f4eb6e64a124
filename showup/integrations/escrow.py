"""Escrow contract boundary.

Settlement only needs two calls: whether the escrow contract is deployed on
the configured chain, and "create challenge". Web3EscrowClient signs with the
platform wallet and funds the escrow from the platform's USDC balance.
FakeEscrowClient stands in when chain calls are skipped.
"""

import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from showup.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_TX_HASH = "0x" + "0" * 64
USDC_DECIMALS = 6
MAX_UINT256 = 2**256 - 1
SECONDS_PER_DAY = 24 * 60 * 60

SUPPORTED_CHAINS: dict[int, dict[str, str]] = {
    137: {
        "alchemy": "https://polygon-mainnet.g.alchemy.com/v2/{key}",
        "public": "https://polygon-rpc.com",
    },
    80002: {
        "alchemy": "https://polygon-amoy.g.alchemy.com/v2/{key}",
        "public": "https://rpc-amoy.polygon.technology",
    },
    8453: {
        "alchemy": "https://base-mainnet.g.alchemy.com/v2/{key}",
        "public": "https://mainnet.base.org",
    },
    84532: {
        "alchemy": "https://base-sepolia.g.alchemy.com/v2/{key}",
        "public": "https://sepolia.base.org",
    },
}

ESCROW_ABI = [
    {
        "name": "usdcToken",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "createChallenge",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "challengeId", "type": "bytes32"},
            {"name": "guarantors", "type": "address[]"},
            {"name": "amount", "type": "uint256"},
            {"name": "duration", "type": "uint256"},
            {"name": "metadataUri", "type": "string"},
        ],
        "outputs": [],
    },
]

ERC20_ABI = [
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


@dataclass
class EscrowChallengeParams:
    challenge_id: str
    payer_email: str
    amount_usd: Decimal
    duration_days: int
    guarantor_emails: list[str] = field(default_factory=list)
    metadata_uri: str = ""
    challenge_title: str = ""
    provider_session_id: str = ""
    payment_intent_id: str | None = None


@dataclass
class EscrowResult:
    success: bool
    on_chain_id: str | None = None
    transaction_hash: str | None = None
    block_number: int | None = None
    error: str | None = None
    test_mode: bool = False


@runtime_checkable
class EscrowClient(Protocol):
    async def is_deployed(self) -> bool: ...

    async def create_challenge(self, params: EscrowChallengeParams) -> EscrowResult: ...


def rpc_url(chain_id: int, alchemy_api_key: str = "") -> str:
    urls = SUPPORTED_CHAINS.get(chain_id)
    if urls is None:
        return ""
    if alchemy_api_key:
        return urls["alchemy"].format(key=alchemy_api_key)
    return urls["public"]


def generate_on_chain_id(provider_session_id: str, timestamp: int | None = None, nonce: str | None = None) -> bytes:
    """bytes32 id derived from the provider session, a timestamp and a nonce."""
    timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
    nonce = nonce if nonce is not None else secrets.token_hex(4)
    return bytes(Web3.solidity_keccak(["string", "uint256", "string"], [provider_session_id, timestamp, nonce]))


def placeholder_guarantor_addresses(challenge_id: str, count: int) -> list[str]:
    # Deterministic stand-ins until guarantors link real wallets
    addresses = []
    for index in range(count):
        digest = Web3.solidity_keccak(["string", "uint256"], [challenge_id, index])
        addresses.append(Web3.to_checksum_address(Web3.to_hex(digest)[:42]))
    return addresses


def _reverted(receipt) -> bool:
    # Mined receipts carry status 1 on success and 0 on revert
    return receipt.get("status") == 0


def to_usdc_units(amount_usd: Decimal | float) -> int:
    return int(Decimal(str(amount_usd)) * (10**USDC_DECIMALS))


class FakeEscrowClient:
    """In-process escrow used when chain calls are skipped.

    Records every create call so duplicate settlement is observable.
    """

    def __init__(self, deployed: bool = True, fail_with: str | None = None):
        self.deployed = deployed
        self.fail_with = fail_with
        self.created: list[EscrowChallengeParams] = []

    async def is_deployed(self) -> bool:
        return self.deployed

    async def create_challenge(self, params: EscrowChallengeParams) -> EscrowResult:
        self.created.append(params)
        if self.fail_with:
            return EscrowResult(success=False, error=self.fail_with, test_mode=True)
        on_chain_id = Web3.to_hex(generate_on_chain_id(params.provider_session_id))
        logger.info(
            "escrow_challenge_simulated",
            challenge_id=params.challenge_id,
            on_chain_id=on_chain_id,
            guarantors=len(params.guarantor_emails),
        )
        return EscrowResult(
            success=True,
            on_chain_id=on_chain_id,
            transaction_hash=ZERO_TX_HASH,
            block_number=0,
            test_mode=True,
        )


class Web3EscrowClient:
    """EscrowClient talking to the deployed contract through web3.py."""

    def __init__(self, settings: Settings):
        self.chain_id = settings.resolved_chain_id
        self.escrow_address = settings.escrow_contract_address
        self.usdc_address = settings.usdc_contract_address
        self.private_key = settings.platform_wallet_private_key
        self.alchemy_api_key = settings.alchemy_api_key

    def _web3(self) -> AsyncWeb3:
        return AsyncWeb3(AsyncHTTPProvider(rpc_url(self.chain_id, self.alchemy_api_key)))

    async def is_deployed(self) -> bool:
        """True when the escrow contract exists and is wired to the configured USDC token.

        Raises on RPC failure; settlement treats that as not deployed.
        """
        if self.chain_id not in SUPPORTED_CHAINS:
            logger.warning("escrow_chain_unsupported", chain_id=self.chain_id)
            return False
        if not self.escrow_address or self.escrow_address.lower() == ZERO_ADDRESS:
            logger.warning("escrow_contract_not_deployed", chain_id=self.chain_id)
            return False

        w3 = self._web3()
        escrow = w3.eth.contract(address=Web3.to_checksum_address(self.escrow_address), abi=ESCROW_ABI)
        usdc = await escrow.functions.usdcToken().call()
        return str(usdc).lower() == self.usdc_address.lower()

    async def create_challenge(self, params: EscrowChallengeParams) -> EscrowResult:
        if not self.private_key:
            return EscrowResult(success=False, error="Platform wallet not configured")
        if self.chain_id not in SUPPORTED_CHAINS:
            return EscrowResult(success=False, error=f"Unsupported chain ID: {self.chain_id}")

        try:
            w3 = self._web3()
            account = Account.from_key(self.private_key)
            escrow_address = Web3.to_checksum_address(self.escrow_address)
            escrow = w3.eth.contract(address=escrow_address, abi=ESCROW_ABI)
            usdc = w3.eth.contract(address=Web3.to_checksum_address(self.usdc_address), abi=ERC20_ABI)

            on_chain_id = generate_on_chain_id(params.provider_session_id)
            amount = to_usdc_units(params.amount_usd)
            duration_seconds = params.duration_days * SECONDS_PER_DAY
            guarantors = placeholder_guarantor_addresses(params.challenge_id, len(params.guarantor_emails))

            allowance = await usdc.functions.allowance(account.address, escrow_address).call()
            if allowance < amount:
                approval = await self._transact(w3, account, usdc.functions.approve(escrow_address, MAX_UINT256))
                if _reverted(approval):
                    return self._reverted_result(params, "approve", approval)
                logger.info("escrow_usdc_approved", tx_hash=Web3.to_hex(approval["transactionHash"]))

            receipt = await self._transact(
                w3,
                account,
                escrow.functions.createChallenge(
                    on_chain_id, guarantors, amount, duration_seconds, params.metadata_uri
                ),
            )
        except Exception as exc:
            logger.error(
                "escrow_create_challenge_failed",
                challenge_id=params.challenge_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return EscrowResult(success=False, error=str(exc) or type(exc).__name__)

        if _reverted(receipt):
            return self._reverted_result(params, "createChallenge", receipt)

        return EscrowResult(
            success=True,
            on_chain_id=Web3.to_hex(on_chain_id),
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
        )

    def _reverted_result(self, params: EscrowChallengeParams, call_name: str, receipt) -> EscrowResult:
        tx_hash = Web3.to_hex(receipt["transactionHash"])
        logger.error(
            "escrow_transaction_reverted",
            challenge_id=params.challenge_id,
            call=call_name,
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
        )
        return EscrowResult(success=False, error=f"{call_name} transaction reverted: {tx_hash}")

    async def _transact(self, w3: AsyncWeb3, account, call) -> dict:
        tx = await call.build_transaction({
            "from": account.address,
            "nonce": await w3.eth.get_transaction_count(account.address),
            "chainId": self.chain_id,
        })
        signed = account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        return await w3.eth.wait_for_transaction_receipt(tx_hash)


def get_escrow_client() -> EscrowClient:
    """Dependency that provides the escrow client.

    Returns FakeEscrowClient when chain calls are skipped in a test-enabled
    environment, Web3EscrowClient otherwise. Override in tests via
    app.dependency_overrides.
    """
    settings = get_settings()
    if settings.skip_blockchain_in_test and settings.test_payments_allowed:
        return FakeEscrowClient()
    return Web3EscrowClient(settings)
