"""SettlementService: deposit checkout and post-payment escrow settlement.

Flow per paid checkout:
1. Ignore anything not tagged ``type=challenge_deposit``
2. Claim the provider session id (primary key insert); a duplicate claim stops here
3. Parse guarantors and duration out of the free-form metadata
4. Ask the escrow client whether the contract is deployed; if not, defer
5. Create the challenge on the escrow contract and record the outcome

The webhook and the simulated test payment both enter at ``settle_payment``.
Rows left ``deferred`` or ``failed``, and claims stuck in ``processing`` past
the settlement lease, are picked up by ``reconcile_pending``.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showup.core.config import get_settings
from showup.core.exceptions import ConflictError, NotFoundError, ValidationError
from showup.core.ids import new_test_payment_intent_id, new_test_session_id, parse_uuid
from showup.db.models.challenge import Challenge
from showup.db.models.payment_settlement import PaymentSettlement
from showup.integrations.escrow import EscrowChallengeParams, EscrowClient, EscrowResult
from showup.integrations.payments import HostedSession, PaymentGateway
from showup.schemas.payments import CheckoutRequest, SimulatedPaymentRequest

logger = structlog.get_logger(__name__)

DEPOSIT_METADATA_TYPE = "challenge_deposit"
TEST_SESSION_PREFIX = "test_session_"
DEFAULT_DURATION_DAYS = 30
RETRYABLE_STATUSES = ("deferred", "failed")

# Challenge statuses that still accept a deposit payment
PAYABLE_STATUSES = ("pending", "payment_pending")

# Settlement status -> challenge status
_CHALLENGE_STATUS = {
    "deferred": "escrow_pending",
    "settled": "settled",
    "failed": "failed",
}


@dataclass
class SettlementOutcome:
    """What happened to one payment notification."""

    status: str  # ignored, duplicate, deferred, settled, failed
    provider_session_id: str | None = None
    challenge_id: str | None = None
    escrow: EscrowResult | None = None


@dataclass
class SessionDetails:
    amount: float
    challenge_title: str
    challenge_duration: str
    guarantor_count: int
    customer_email: str
    payment_status: str | None


def parse_guarantors(raw: Any) -> list[str]:
    """Guarantor list from metadata JSON. Anything malformed yields []."""
    if isinstance(raw, list):
        return [str(g) for g in raw]
    try:
        value = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []
    return [str(g) for g in value]


def parse_duration(raw: Any, default: int = DEFAULT_DURATION_DAYS) -> int:
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return default
    return days if days > 0 else default


def _challenge_metadata(challenge: Challenge) -> dict[str, str]:
    return {
        "challengeTitle": challenge.title,
        "challengeDuration": str(challenge.duration_days),
        "guarantors": json.dumps(challenge.guarantors or []),
        "metadataUri": challenge.metadata_uri or "",
    }


def _retryable(stale_before: datetime):
    """Deferred and failed rows, plus claims whose attempt never recorded an outcome."""
    return or_(
        PaymentSettlement.status.in_(RETRYABLE_STATUSES),
        and_(PaymentSettlement.status == "processing", PaymentSettlement.updated_at < stale_before),
    )


class SettlementService:
    """Deposit & settlement coordinator."""

    def __init__(self, escrow: EscrowClient, session_factory: async_sessionmaker[AsyncSession]):
        self.escrow = escrow
        self.session_factory = session_factory

    # ── Checkout ────────────────────────────────────────────────────

    async def create_checkout(self, user_id: str, body: CheckoutRequest, gateway: PaymentGateway) -> HostedSession:
        """Launch a hosted payment session for a deposit.

        When ``challenge_id`` names one of the caller's challenges, its title,
        duration, guarantors and metadata URI are carried in the provider
        metadata and the challenge moves to ``payment_pending``. A challenge
        whose deposit is already paid cannot be checked out again.
        """
        if body.amount is None or body.amount <= 0:
            raise ValidationError("amount must be greater than 0")

        metadata: dict[str, str] = {
            **(body.metadata or {}),
            "challengeId": body.challenge_id or "",
            "type": DEPOSIT_METADATA_TYPE,
        }

        challenge = None
        if body.challenge_id:
            challenge = await self._payable_challenge(user_id, body.challenge_id, body.amount)
            metadata.update(_challenge_metadata(challenge))

        settings = get_settings()
        hosted = await gateway.create_hosted_session(
            amount_cents=int(round(body.amount * 100)),
            metadata=metadata,
            success_url=f"{settings.frontend_url}/deposit/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.frontend_url}/deposit/cancelled",
            customer_email=body.customer_email,
            description=f"Deposit for challenge {body.challenge_id}" if body.challenge_id else "Challenge deposit",
        )

        if challenge is not None:
            async with self.session_factory() as db, db.begin():
                await db.execute(
                    update(Challenge)
                    .where(Challenge.id == challenge.id, Challenge.status.in_(PAYABLE_STATUSES))
                    .values(status="payment_pending", payment_session_id=hosted.session_id)
                )

        logger.info("checkout_session_created", provider_session_id=hosted.session_id, challenge_id=body.challenge_id)
        return hosted

    async def get_session_details(self, session_id: str, gateway: PaymentGateway) -> SessionDetails:
        if not session_id:
            raise ValidationError("session_id is required")

        if session_id.startswith(TEST_SESSION_PREFIX):
            async with self.session_factory() as db:
                row = await db.get(PaymentSettlement, session_id)
            if row is None:
                raise NotFoundError("Session not found")
            return SessionDetails(
                amount=float(row.amount_usd),
                challenge_title=row.challenge_title or "",
                challenge_duration=str(row.duration_days),
                guarantor_count=len(row.guarantors or []),
                customer_email=row.payer_email,
                payment_status="paid",
            )

        provider_session = await gateway.retrieve_session(session_id)
        if provider_session is None:
            raise NotFoundError("Session not found")
        metadata = provider_session.metadata
        return SessionDetails(
            amount=provider_session.amount_total_cents / 100,
            challenge_title=metadata.get("challengeTitle", ""),
            challenge_duration=metadata.get("challengeDuration", ""),
            guarantor_count=len(parse_guarantors(metadata.get("guarantors"))),
            customer_email=provider_session.customer_email,
            payment_status=provider_session.payment_status,
        )

    # ── Notifications ───────────────────────────────────────────────

    async def handle_event(self, event: Any) -> SettlementOutcome | None:
        """Dispatch a provider webhook event. Returns None for events that are only logged."""
        event_type = event["type"]
        data = event["data"]["object"]

        if event_type == "checkout.session.completed":
            if data.get("payment_status") != "paid":
                logger.info("checkout_completed_unpaid", provider_session_id=data.get("id"))
                return None
            details = data.get("customer_details") or {}
            return await self.settle_payment(
                provider_session_id=data["id"],
                metadata=dict(data.get("metadata") or {}),
                amount_usd=Decimal(data.get("amount_total") or 0) / 100,
                payer_email=details.get("email") or data.get("customer_email") or "",
                payment_intent_id=data.get("payment_intent"),
            )

        if event_type == "payment_intent.succeeded":
            logger.info("payment_intent_succeeded", payment_intent_id=data.get("id"))
            return None

        logger.info("stripe_event_unhandled", event_type=event_type)
        return None

    async def simulate_payment(self, user_id: str, body: SimulatedPaymentRequest) -> tuple[str, SettlementOutcome]:
        """Run the post-payment path for one of the caller's challenges with synthetic provider ids.

        Amount, title, duration and guarantors are taken from the stored
        challenge, as a real checkout would carry them.
        """
        if not body.challenge_id:
            raise ValidationError("challenge_id is required")
        if body.amount is not None and body.amount <= 0:
            raise ValidationError("amount must be greater than 0")
        challenge = await self._payable_challenge(user_id, body.challenge_id, body.amount)

        provider_session_id = new_test_session_id()
        metadata = {
            "type": DEPOSIT_METADATA_TYPE,
            "challengeId": challenge.challenge_id,
            **_challenge_metadata(challenge),
        }
        logger.info("test_payment_initiated", provider_session_id=provider_session_id, challenge_id=body.challenge_id)
        outcome = await self.settle_payment(
            provider_session_id=provider_session_id,
            metadata=metadata,
            amount_usd=Decimal(challenge.amount_usd),
            payer_email=body.customer_email or challenge.user_email,
            payment_intent_id=new_test_payment_intent_id(),
            test_mode=True,
        )
        return provider_session_id, outcome

    async def settle_payment(
        self,
        provider_session_id: str,
        metadata: dict[str, Any],
        amount_usd: Decimal,
        payer_email: str,
        payment_intent_id: str | None = None,
        test_mode: bool = False,
    ) -> SettlementOutcome:
        """Settle one successful payment. Safe to call again for the same session id."""
        if metadata.get("type") != DEPOSIT_METADATA_TYPE:
            logger.info("settlement_ignored_not_deposit", provider_session_id=provider_session_id)
            return SettlementOutcome("ignored", provider_session_id)

        challenge_id = metadata.get("challengeId") or None
        settlement = PaymentSettlement(
            provider_session_id=provider_session_id,
            challenge_id=challenge_id,
            payer_email=payer_email or "",
            amount_usd=amount_usd,
            duration_days=parse_duration(metadata.get("challengeDuration")),
            guarantors=parse_guarantors(metadata.get("guarantors")),
            challenge_title=metadata.get("challengeTitle") or None,
            metadata_uri=metadata.get("metadataUri") or "",
            payment_intent_id=payment_intent_id,
            test_mode=test_mode,
            status="processing",
            attempts=0,
        )
        if not await self._claim(settlement):
            logger.info("settlement_duplicate_ignored", provider_session_id=provider_session_id)
            return SettlementOutcome("duplicate", provider_session_id, challenge_id)

        return await self._attempt(provider_session_id)

    async def reconcile_pending(self, limit: int | None = None) -> dict[str, int]:
        """Retry escrow creation for deferred and failed settlements.

        A row still ``processing`` past the settlement lease belongs to an
        attempt that died before recording its outcome, and is retried too.
        """
        settings = get_settings()
        limit = limit or settings.reconcile_batch_size
        stale_before = datetime.now(timezone.utc) - timedelta(seconds=settings.settlement_lease_seconds)
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentSettlement.provider_session_id)
                .where(_retryable(stale_before))
                .order_by(PaymentSettlement.updated_at)
                .limit(limit)
            )
            candidates = list(result.scalars().all())

        tally = {"attempted": 0, "settled": 0, "deferred": 0, "failed": 0}
        for provider_session_id in candidates:
            if not await self._claim_retry(provider_session_id, stale_before):
                continue
            outcome = await self._attempt(provider_session_id)
            tally["attempted"] += 1
            tally[outcome.status] += 1

        logger.info("settlement_reconcile_finished", **tally)
        return tally

    # ── Internals ───────────────────────────────────────────────────

    async def _payable_challenge(self, user_id: str, challenge_id: str, amount: float | None) -> Challenge:
        """Load one of the caller's challenges that still awaits its deposit.

        Raises:
            NotFoundError: Unknown challenge, or one owned by another user
            ConflictError: The deposit was already paid
            ValidationError: ``amount`` differs from the challenge deposit
        """
        uid = parse_uuid(user_id, "User")
        async with self.session_factory() as db:
            result = await db.execute(
                select(Challenge).where(
                    Challenge.challenge_id == challenge_id,
                    Challenge.user_id == uid,
                )
            )
            challenge = result.scalar_one_or_none()
        if challenge is None:
            raise NotFoundError("Challenge not found")
        if challenge.status not in PAYABLE_STATUSES:
            raise ConflictError("Challenge deposit has already been paid")
        if amount is not None and Decimal(str(amount)) != Decimal(challenge.amount_usd):
            raise ValidationError("amount does not match the challenge deposit")
        return challenge

    async def _claim(self, settlement: PaymentSettlement) -> bool:
        """Return True if the session id is new (claimed). False if duplicate."""
        async with self.session_factory() as db:
            try:
                db.add(settlement)
                await db.commit()
                return True
            except IntegrityError:
                await db.rollback()
                return False

    async def _claim_retry(self, provider_session_id: str, stale_before: datetime) -> bool:
        # Conditional flip so two reconcilers never retry the same row; it also restarts the lease
        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                update(PaymentSettlement)
                .where(
                    PaymentSettlement.provider_session_id == provider_session_id,
                    _retryable(stale_before),
                )
                .values(status="processing", updated_at=datetime.now(timezone.utc))
            )
            return result.rowcount == 1

    async def _attempt(self, provider_session_id: str) -> SettlementOutcome:
        async with self.session_factory() as db:
            row = await db.get(PaymentSettlement, provider_session_id)
        if row is None:
            raise NotFoundError("Settlement not found")

        try:
            deployed = await self.escrow.is_deployed()
            unreachable = None
        except Exception as exc:
            deployed = False
            unreachable = f"{type(exc).__name__}: {exc}"
            logger.warning("escrow_unreachable", provider_session_id=provider_session_id, error=unreachable)

        if not deployed:
            logger.info(
                "settlement_deferred",
                provider_session_id=provider_session_id,
                challenge_id=row.challenge_id,
                reason=unreachable or "escrow_not_deployed",
            )
            await self._record(row, "deferred", error=unreachable or "escrow contract not deployed")
            return SettlementOutcome("deferred", provider_session_id, row.challenge_id)

        params = EscrowChallengeParams(
            challenge_id=row.challenge_id or provider_session_id,
            payer_email=row.payer_email,
            amount_usd=Decimal(row.amount_usd),
            duration_days=row.duration_days,
            guarantor_emails=list(row.guarantors or []),
            metadata_uri=row.metadata_uri or "",
            challenge_title=row.challenge_title or "",
            provider_session_id=provider_session_id,
            payment_intent_id=row.payment_intent_id,
        )
        try:
            result = await self.escrow.create_challenge(params)
        except Exception as exc:
            result = EscrowResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if result.success:
            logger.info(
                "settlement_escrow_created",
                provider_session_id=provider_session_id,
                challenge_id=row.challenge_id,
                on_chain_id=result.on_chain_id,
                tx_hash=result.transaction_hash,
                block_number=result.block_number,
            )
            await self._record(row, "settled", result=result)
            return SettlementOutcome("settled", provider_session_id, row.challenge_id, result)

        # No automatic refund; the row stays queued for reconciliation
        logger.error(
            "settlement_escrow_failed",
            provider_session_id=provider_session_id,
            challenge_id=row.challenge_id,
            error=result.error,
        )
        await self._record(row, "failed", result=result, error=result.error)
        return SettlementOutcome("failed", provider_session_id, row.challenge_id, result)

    async def _record(
        self,
        row: PaymentSettlement,
        status: str,
        result: EscrowResult | None = None,
        error: str | None = None,
    ) -> None:
        on_chain = {}
        if result is not None and result.success:
            on_chain = {
                "on_chain_id": result.on_chain_id,
                "transaction_hash": result.transaction_hash,
                "block_number": result.block_number,
            }

        async with self.session_factory() as db, db.begin():
            await db.execute(
                update(PaymentSettlement)
                .where(PaymentSettlement.provider_session_id == row.provider_session_id)
                .values(
                    status=status,
                    attempts=PaymentSettlement.attempts + 1,
                    last_error=None if status == "settled" else error,
                    **on_chain,
                )
            )
            if row.challenge_id:
                await db.execute(
                    update(Challenge)
                    .where(Challenge.challenge_id == row.challenge_id)
                    .values(
                        status=_CHALLENGE_STATUS[status],
                        payment_session_id=row.provider_session_id,
                        **on_chain,
                    )
                )
