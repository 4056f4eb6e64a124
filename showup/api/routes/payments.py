"""Deposit routes: Stripe checkout, session lookup, webhooks, test payments, reconciliation."""

import json

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from showup.core.auth import AuthenticatedUser, require_auth
from showup.core.config import get_settings
from showup.db.base import get_session_factory
from showup.integrations.escrow import EscrowClient, get_escrow_client
from showup.integrations.payments import PaymentGateway, get_payment_gateway
from showup.schemas.payments import (
    CheckoutRequest,
    CheckoutResponse,
    EscrowOutcome,
    ReconcileResponse,
    SessionDetailsResponse,
    SimulatedPaymentRequest,
    SimulatedPaymentResponse,
    SimulationStatusResponse,
)
from showup.services.settlement_service import SettlementService

logger = structlog.get_logger(__name__)

router = APIRouter()


# ── Helpers ─────────────────────────────────────────────────────────


async def _parse_webhook_event(request: Request) -> dict:
    """Verify and decode a webhook payload.

    A signed payload is verified whenever a secret is configured. Unsigned
    payloads are only accepted in explicit insecure mode.
    """
    settings = get_settings()
    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if settings.stripe_webhook_secret and sig_header:
        try:
            return stripe.Webhook.construct_event(body, sig_header, settings.stripe_webhook_secret)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=400, detail="Invalid signature")

    if not settings.stripe_webhook_insecure:
        if not settings.stripe_webhook_secret:
            logger.error("stripe_webhook_secret_missing")
            raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    logger.warning("webhook_signature_not_verified", has_signature=bool(sig_header))
    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(event, dict) or "type" not in event or "data" not in event:
        raise HTTPException(status_code=400, detail="Invalid payload")
    return event


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(require_auth),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    escrow: EscrowClient = Depends(get_escrow_client),
):
    """Create a hosted checkout session for a challenge deposit."""
    service = SettlementService(escrow, get_session_factory())
    hosted = await service.create_checkout(user.user_id, body, gateway)
    return CheckoutResponse(session_id=hosted.session_id, url=hosted.url)


@router.get("/session", response_model=SessionDetailsResponse)
async def get_checkout_session(
    session_id: str = "",
    gateway: PaymentGateway = Depends(get_payment_gateway),
    escrow: EscrowClient = Depends(get_escrow_client),
):
    """Details for the deposit confirmation page."""
    service = SettlementService(escrow, get_session_factory())
    details = await service.get_session_details(session_id, gateway)
    return SessionDetailsResponse(
        amount=details.amount,
        challenge_title=details.challenge_title,
        challenge_duration=details.challenge_duration,
        guarantor_count=details.guarantor_count,
        customer_email=details.customer_email,
        payment_status=details.payment_status,
    )


@router.post("/webhook")
async def stripe_webhook(request: Request, escrow: EscrowClient = Depends(get_escrow_client)):
    """Handle Stripe webhook events.

    Always acknowledges a well-formed, authentic event with 200, including
    when settlement is deferred or the escrow call fails.
    """
    event = await _parse_webhook_event(request)
    logger.info("stripe_webhook_received", event_type=event["type"], event_id=event.get("id"))

    service = SettlementService(escrow, get_session_factory())
    outcome = await service.handle_event(event)
    return {"received": True, "settlement": outcome.status if outcome else None}


@router.post("/test-payment", response_model=SimulatedPaymentResponse)
async def simulate_test_payment(
    body: SimulatedPaymentRequest,
    user: AuthenticatedUser = Depends(require_auth),
    escrow: EscrowClient = Depends(get_escrow_client),
):
    """Simulate a successful payment for one of the caller's unpaid challenges and settle it like the webhook."""
    settings = get_settings()
    if not settings.test_payments_allowed:
        raise HTTPException(status_code=403, detail="Test payments are not allowed in production")

    service = SettlementService(escrow, get_session_factory())
    provider_session_id, outcome = await service.simulate_payment(user.user_id, body)
    escrow_result = outcome.escrow
    return SimulatedPaymentResponse(
        success=True,
        session_id=provider_session_id,
        url=f"{settings.frontend_url}/deposit/success?session_id={provider_session_id}&test=true",
        settlement_status=outcome.status,
        contract_created=bool(escrow_result and escrow_result.success),
        contract_result=(
            EscrowOutcome(
                success=escrow_result.success,
                on_chain_id=escrow_result.on_chain_id,
                transaction_hash=escrow_result.transaction_hash,
                block_number=escrow_result.block_number,
                error=escrow_result.error,
            )
            if escrow_result
            else None
        ),
        message="Test payment simulated successfully",
    )


@router.get("/test-payment", response_model=SimulationStatusResponse)
async def test_payment_status():
    settings = get_settings()
    allowed = settings.test_payments_allowed
    return SimulationStatusResponse(
        test_mode_allowed=allowed,
        environment=settings.environment,
        message="Test payments are enabled" if allowed else "Test payments are disabled in production",
    )


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_settlements(
    user: AuthenticatedUser = Depends(require_auth),
    escrow: EscrowClient = Depends(get_escrow_client),
):
    """Retry escrow creation for deferred and failed settlements."""
    service = SettlementService(escrow, get_session_factory())
    return ReconcileResponse(**await service.reconcile_pending())
