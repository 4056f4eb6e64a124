"""Deposit and settlement Pydantic schemas."""

from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    amount: float  # dollars
    challenge_id: str | None = None
    customer_email: str | None = None
    metadata: dict[str, str] | None = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: str


class SessionDetailsResponse(BaseModel):
    amount: float
    challenge_title: str
    challenge_duration: str
    guarantor_count: int
    customer_email: str
    payment_status: str | None


class SimulatedPaymentRequest(BaseModel):
    """Simulated payment for one of the caller's challenges.

    The deposit terms come from the stored challenge; ``amount``, when given,
    must match it.
    """

    challenge_id: str = ""
    amount: float | None = None
    customer_email: str | None = None


class EscrowOutcome(BaseModel):
    success: bool
    on_chain_id: str | None = None
    transaction_hash: str | None = None
    block_number: int | None = None
    error: str | None = None


class SimulatedPaymentResponse(BaseModel):
    success: bool
    session_id: str
    url: str
    test_mode: bool = True
    settlement_status: str
    contract_created: bool
    contract_result: EscrowOutcome | None = None
    message: str


class SimulationStatusResponse(BaseModel):
    test_mode_allowed: bool
    environment: str
    message: str


class ReconcileResponse(BaseModel):
    attempted: int
    settled: int
    deferred: int
    failed: int
