"""Onboarding Pydantic schemas: embedded documents and API contracts.

The draft, transcript and suggestion documents are stored in JSON columns and
re-validated through these models whenever they are read back.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from showup.domain.steps import OnboardingStep

SCHEMA_VERSION = 1

ChallengeType = Literal[
    "behavioral",
    "habit",
    "milestone",
    "consistency",
    "wellness",
    "learning",
    "fitness",
    "productivity",
    "custom",
]
FrequencyType = Literal["daily", "weekly", "specific-days", "custom"]
DepositRecipient = Literal["platform", "friend"]


def _new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:16]}"


# ── Embedded documents ──────────────────────────────────────────────


class FrequencyDetails(BaseModel):
    days_of_week: list[int] | None = None  # 0-6, Sunday first
    times_per_week: int | None = None
    times_per_day: int | None = None
    specific_times: list[str] | None = None
    custom_schedule: str | None = None


class NotificationSettings(BaseModel):
    enabled: bool = True
    reminder_time: str | None = None
    reminder_days_before: int | None = None
    push_enabled: bool | None = None
    email_enabled: bool | None = None
    sms_enabled: bool | None = None


class SuggestedChallenge(BaseModel):
    """A structured challenge proposal produced by the discovery coach."""

    title: str
    description: str
    type: ChallengeType
    suggested_frequency: FrequencyType
    suggested_duration: int = Field(..., ge=1)
    suggested_deposit: float = Field(..., ge=0)
    reasoning: str = ""


class AIMessage(BaseModel):
    """One transcript entry. Immutable once appended."""

    id: str = Field(default_factory=_new_message_id)
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    suggested_challenge: SuggestedChallenge | None = None


class ChallengeDraft(BaseModel):
    """Partially filled challenge. Nothing is mandatory until finalize."""

    title: str | None = None
    description: str | None = None
    type: ChallengeType | None = None
    resolution_method: str | None = None
    deposit_amount: float | None = None
    deposit_recipient: DepositRecipient | None = None
    linked_friend_email: str | None = None
    frequency: FrequencyType | None = None
    frequency_details: FrequencyDetails | None = None
    duration_days: int | None = None
    notification_settings: NotificationSettings | None = None
    guarantors: list[str] | None = None
    ai_suggested: bool | None = None
    ai_conversation_id: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


# ── Request / Response schemas ──────────────────────────────────────


class OnboardingSessionResponse(BaseModel):
    id: str
    user_id: str
    current_step: OnboardingStep
    steps_completed: list[OnboardingStep]
    challenge_draft: ChallengeDraft
    ai_messages: list[AIMessage]
    ai_conversation_id: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    abandoned_at: datetime | None = None


class SessionEnvelope(BaseModel):
    session: OnboardingSessionResponse
    terms_accepted: bool


class SessionPatchRequest(BaseModel):
    """Partial session update. All parts apply in one transaction.

    Order: ``complete_step`` first, then navigation to ``current_step``,
    then the draft and transcript.
    """

    session_id: uuid.UUID
    complete_step: OnboardingStep | None = None
    skipped: bool = False
    current_step: OnboardingStep | None = None
    time_spent_seconds: int | None = Field(default=None, ge=0)
    challenge_draft: ChallengeDraft | None = None
    ai_messages: list[AIMessage] | None = None


class TermsAcceptRequest(BaseModel):
    session_id: uuid.UUID | None = None
    terms_version: str | None = None


class TermsAcceptResponse(BaseModel):
    accepted_at: datetime
    terms_version: str
    session: OnboardingSessionResponse | None = None


class ChatMessageRequest(BaseModel):
    session_id: uuid.UUID
    conversation_id: uuid.UUID | None = None
    message: str = ""


class ChatMessageResponse(BaseModel):
    conversation_id: str
    message: AIMessage
    suggested_challenges: list[SuggestedChallenge]


class SelectChallengeRequest(BaseModel):
    session_id: uuid.UUID
    conversation_id: uuid.UUID
    selected_challenge: SuggestedChallenge


class CompleteOnboardingRequest(BaseModel):
    session_id: uuid.UUID
    challenge_draft: ChallengeDraft | None = None
    payment_method: Literal["stripe", "crypto"] = "stripe"


class CheckoutData(BaseModel):
    challenge_id: str
    amount: float
    title: str
    duration: int
    guarantors: list[str]


class CompleteOnboardingResponse(BaseModel):
    challenge_id: str
    status: str
    payment_method: str
    checkout_data: CheckoutData


class AnalyticsEventResponse(BaseModel):
    id: int
    event_type: str
    step_name: str | None
    event_data: dict
    time_spent_seconds: int | None
    created_at: datetime


class OnboardingMetricsResponse(BaseModel):
    total_sessions: int
    completed_sessions: int
    abandoned_sessions: int
    completion_rate: float
    avg_completion_seconds: float | None
    step_started_counts: dict[str, int]
    popular_challenge_types: list[dict]
