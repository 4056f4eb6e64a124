"""Onboarding routes: session, terms, discovery chat, completion, analytics."""

from datetime import datetime

from fastapi import APIRouter, Depends

from showup.coach.base import ChallengeCoach
from showup.coach.keyword import KeywordCoach
from showup.core.auth import AuthenticatedUser, require_auth
from showup.core.config import get_settings
from showup.db.base import get_session_factory
from showup.db.models.onboarding_session import OnboardingSession
from showup.schemas.onboarding import (
    AnalyticsEventResponse,
    ChatMessageRequest,
    ChatMessageResponse,
    CheckoutData,
    CompleteOnboardingRequest,
    CompleteOnboardingResponse,
    OnboardingMetricsResponse,
    OnboardingSessionResponse,
    SelectChallengeRequest,
    SessionEnvelope,
    SessionPatchRequest,
    TermsAcceptRequest,
    TermsAcceptResponse,
)
from showup.services.analytics_service import AnalyticsService
from showup.services.discovery_service import DiscoveryService
from showup.services.onboarding_service import OnboardingService, load_draft, load_messages

router = APIRouter()


def get_coach() -> ChallengeCoach:
    """Dependency that provides the discovery coach.

    Returns AnthropicCoach when ANTHROPIC_API_KEY is set, KeywordCoach otherwise.
    Override this dependency in tests via app.dependency_overrides.
    """
    settings = get_settings()
    if settings.anthropic_api_key:
        from showup.coach.anthropic_coach import AnthropicCoach

        return AnthropicCoach(api_key=settings.anthropic_api_key, model=settings.coach_model)
    return KeywordCoach()


def session_response(session: OnboardingSession) -> OnboardingSessionResponse:
    return OnboardingSessionResponse(
        id=str(session.id),
        user_id=str(session.user_id),
        current_step=session.current_step,
        steps_completed=session.steps_completed or [],
        challenge_draft=load_draft(session.challenge_draft),
        ai_messages=load_messages(session.ai_messages),
        ai_conversation_id=str(session.ai_conversation_id) if session.ai_conversation_id else None,
        started_at=session.started_at,
        completed_at=session.completed_at,
        abandoned_at=session.abandoned_at,
    )


@router.get("/session", response_model=SessionEnvelope)
async def get_session(user: AuthenticatedUser = Depends(require_auth)):
    """Return the caller's active onboarding session, creating it on first visit."""
    service = OnboardingService(get_session_factory())
    session, terms_accepted = await service.get_or_create(user.user_id)
    return SessionEnvelope(session=session_response(session), terms_accepted=terms_accepted)


@router.patch("/session", response_model=OnboardingSessionResponse)
async def patch_session(body: SessionPatchRequest, user: AuthenticatedUser = Depends(require_auth)):
    """Update step progress, draft and transcript mirror atomically.

    Raises:
        ValidationError(400): Unreachable step, closed session, or transcript rewrite
        NotFoundError(404): Session not found or owned by another user
    """
    service = OnboardingService(get_session_factory())
    session = await service.patch(user.user_id, body)
    return session_response(session)


@router.post("/session/{session_id}/abandon", response_model=OnboardingSessionResponse)
async def abandon_session(session_id: str, user: AuthenticatedUser = Depends(require_auth)):
    service = OnboardingService(get_session_factory())
    session = await service.abandon(user.user_id, session_id)
    return session_response(session)


@router.get("/session/{session_id}/events", response_model=list[AnalyticsEventResponse])
async def list_session_events(session_id: str, user: AuthenticatedUser = Depends(require_auth)):
    service = AnalyticsService(get_session_factory())
    events = await service.list_session_events(user.user_id, session_id)
    return [
        AnalyticsEventResponse(
            id=e.id,
            event_type=e.event_type,
            step_name=e.step_name,
            event_data=e.event_data or {},
            time_spent_seconds=e.time_spent_seconds,
            created_at=e.created_at,
        )
        for e in events
    ]


@router.get("/metrics", response_model=OnboardingMetricsResponse)
async def onboarding_metrics(
    start: datetime | None = None,
    end: datetime | None = None,
    user: AuthenticatedUser = Depends(require_auth),
):
    service = AnalyticsService(get_session_factory())
    return OnboardingMetricsResponse(**await service.get_onboarding_metrics(start, end))


@router.post("/terms", response_model=TermsAcceptResponse)
async def accept_terms(body: TermsAcceptRequest, user: AuthenticatedUser = Depends(require_auth)):
    service = OnboardingService(get_session_factory())
    account, session = await service.accept_terms(user.user_id, body.session_id, body.terms_version)
    return TermsAcceptResponse(
        accepted_at=account.terms_accepted_at,
        terms_version=account.terms_version,
        session=session_response(session) if session is not None else None,
    )


@router.post("/ai-chat", response_model=ChatMessageResponse)
async def send_chat_message(
    body: ChatMessageRequest,
    user: AuthenticatedUser = Depends(require_auth),
    coach: ChallengeCoach = Depends(get_coach),
):
    """Send a discovery message and receive the coach's reply."""
    service = DiscoveryService(get_session_factory(), coach)
    conversation, reply, suggestions = await service.send_message(
        user.user_id, body.session_id, body.message, body.conversation_id
    )
    return ChatMessageResponse(
        conversation_id=str(conversation.id),
        message=reply,
        suggested_challenges=suggestions,
    )


@router.put("/ai-chat")
async def select_chat_suggestion(body: SelectChallengeRequest, user: AuthenticatedUser = Depends(require_auth)):
    """Adopt a suggested challenge into the draft."""
    service = DiscoveryService(get_session_factory())
    await service.select_suggestion(user.user_id, body.session_id, body.conversation_id, body.selected_challenge)
    return {"success": True}


@router.post("/complete", response_model=CompleteOnboardingResponse, status_code=201)
async def complete_onboarding(body: CompleteOnboardingRequest, user: AuthenticatedUser = Depends(require_auth)):
    """Finalize the draft into a pending challenge and return checkout data."""
    service = OnboardingService(get_session_factory())
    challenge = await service.finalize(user.user_id, body.session_id, body.challenge_draft)
    return CompleteOnboardingResponse(
        challenge_id=challenge.challenge_id,
        status=challenge.status,
        payment_method=body.payment_method,
        checkout_data=CheckoutData(
            challenge_id=challenge.challenge_id,
            amount=float(challenge.amount_usd),
            title=challenge.title,
            duration=challenge.duration_days,
            guarantors=list(challenge.guarantors),
        ),
    )
