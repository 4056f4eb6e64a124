"""Payment provider boundary: hosted checkout creation and session lookup."""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import stripe
import structlog

from showup.core.config import get_settings
from showup.core.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "Payment provider"


@dataclass
class HostedSession:
    session_id: str
    url: str


@dataclass
class ProviderSession:
    """Read-only view of a provider checkout session."""

    session_id: str
    amount_total_cents: int
    metadata: dict[str, str] = field(default_factory=dict)
    payment_status: str | None = None
    customer_email: str = ""


@runtime_checkable
class PaymentGateway(Protocol):
    async def create_hosted_session(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        description: str = "Challenge deposit",
    ) -> HostedSession: ...

    async def retrieve_session(self, session_id: str) -> ProviderSession | None: ...


class StripeGateway:
    """PaymentGateway backed by Stripe Checkout (async SDK calls)."""

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def _configure(self) -> None:
        if not self.secret_key:
            raise ExternalServiceError(PROVIDER_NAME, "STRIPE_SECRET_KEY is not configured")
        stripe.api_key = self.secret_key

    async def create_hosted_session(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        description: str = "Challenge deposit",
    ) -> HostedSession:
        self._configure()
        try:
            session = await stripe.checkout.Session.create_async(
                payment_method_types=["card"],
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {"name": "Challenge Deposit", "description": description},
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email or None,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            raise ExternalServiceError(PROVIDER_NAME, f"checkout create failed: {exc}") from exc

        return HostedSession(session_id=session["id"], url=session["url"])

    async def retrieve_session(self, session_id: str) -> ProviderSession | None:
        self._configure()
        try:
            session = await stripe.checkout.Session.retrieve_async(session_id)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                return None
            raise ExternalServiceError(PROVIDER_NAME, f"session retrieve failed: {exc}") from exc
        except stripe.StripeError as exc:
            raise ExternalServiceError(PROVIDER_NAME, f"session retrieve failed: {exc}") from exc

        details = session.get("customer_details") or {}
        return ProviderSession(
            session_id=session["id"],
            amount_total_cents=session.get("amount_total") or 0,
            metadata=dict(session.get("metadata") or {}),
            payment_status=session.get("payment_status"),
            customer_email=details.get("email") or "",
        )


def get_payment_gateway() -> PaymentGateway:
    """Dependency that provides the payment gateway.

    Override via app.dependency_overrides in tests.
    """
    return StripeGateway(get_settings().stripe_secret_key)
