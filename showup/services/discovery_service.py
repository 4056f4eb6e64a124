"""DiscoveryService: the AI-assisted challenge discovery conversation.

The transcript is append-only, both per conversation and in the session
mirror, which keeps every conversation the user started. A reply is
generated outside any database transaction, then the user message, the
reply and the analytics events are written together.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showup.coach.base import ChallengeCoach
from showup.core.exceptions import InternalError, NotFoundError, ValidationError
from showup.core.ids import parse_uuid
from showup.db.models.ai_conversation import AIConversation
from showup.domain.events import AnalyticsEventType
from showup.domain.steps import OnboardingStep
from showup.schemas.onboarding import AIMessage, SuggestedChallenge
from showup.services.analytics_service import record_event
from showup.services.onboarding_service import (
    apply_complete_step,
    apply_draft,
    dump_messages,
    load_draft,
    load_messages,
    load_owned_session,
    require_active,
)

logger = structlog.get_logger(__name__)

AI_CHAT = OnboardingStep.AI_CHAT.value


async def _load_owned_conversation(db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID) -> AIConversation:
    result = await db.execute(
        select(AIConversation).where(
            AIConversation.id == conversation_id,
            AIConversation.user_id == user_id,
        )
    )
    conversation = result.scalar_one_or_none()
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


class DiscoveryService:
    """Conversation manager between the user and a ChallengeCoach.

    Only ``send_message`` talks to the coach; selecting a suggestion works
    without one.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], coach: ChallengeCoach | None = None):
        self.session_factory = session_factory
        self.coach = coach

    async def send_message(
        self,
        user_id: str,
        session_id: str | uuid.UUID,
        text: str,
        conversation_id: str | uuid.UUID | None = None,
    ) -> tuple[AIConversation, AIMessage, list[SuggestedChallenge]]:
        """Append a user message, generate the assistant reply, persist both.

        A new conversation bound to the user and session is created when no
        ``conversation_id`` is given.

        Returns:
            (conversation, assistant_message, all_suggestions_so_far)

        Raises:
            ValidationError: Empty message or closed session
            NotFoundError: Unknown or foreign session / conversation
        """
        if not (text or "").strip():
            raise ValidationError("message is required")
        if self.coach is None:
            raise InternalError("discovery coach not configured")

        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        cid = parse_uuid(conversation_id, "Conversation") if conversation_id else None

        async with self.session_factory() as db:
            session = await load_owned_session(db, sid, uid)
            require_active(session)
            history: list[AIMessage] = []
            if cid is not None:
                conversation = await _load_owned_conversation(db, cid, uid)
                history = load_messages(conversation.messages)

        user_message = AIMessage(role="user", content=text)
        reply = await self.coach.generate([*history, user_message], text)
        assistant_message = AIMessage(role="assistant", content=reply.content, suggested_challenge=reply.suggestion)

        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, sid, uid)
            require_active(session)
            if cid is None:
                conversation = AIConversation(
                    user_id=uid,
                    onboarding_session_id=sid,
                    messages=[],
                    suggested_challenges=[],
                    total_tokens_used=0,
                )
                db.add(conversation)
                await db.flush()
            else:
                conversation = await _load_owned_conversation(db, cid, uid)

            transcript = [*load_messages(conversation.messages), user_message, assistant_message]
            conversation.messages = dump_messages(transcript)
            if reply.suggestion is not None:
                conversation.suggested_challenges = [
                    *(conversation.suggested_challenges or []),
                    reply.suggestion.model_dump(mode="json"),
                ]
            if reply.model:
                conversation.model_used = reply.model
            conversation.total_tokens_used = (conversation.total_tokens_used or 0) + reply.tokens_used

            # The session mirror spans every conversation and only ever grows
            session.ai_messages = dump_messages([*load_messages(session.ai_messages), user_message, assistant_message])
            session.ai_conversation_id = conversation.id

            await record_event(
                db,
                sid,
                uid,
                AnalyticsEventType.AI_MESSAGE_SENT,
                step_name=AI_CHAT,
                event_data={"message_length": len(text)},
            )
            await record_event(
                db,
                sid,
                uid,
                AnalyticsEventType.AI_MESSAGE_RECEIVED,
                step_name=AI_CHAT,
                event_data={
                    "has_suggestion": reply.suggestion is not None,
                    "suggestion_title": reply.suggestion.title if reply.suggestion else None,
                },
            )

        suggestions = [SuggestedChallenge.model_validate(s) for s in conversation.suggested_challenges]
        logger.info(
            "discovery_message_exchanged",
            conversation_id=str(conversation.id),
            messages=len(transcript),
            has_suggestion=reply.suggestion is not None,
        )
        return conversation, assistant_message, suggestions

    async def select_suggestion(
        self,
        user_id: str,
        session_id: str | uuid.UUID,
        conversation_id: str | uuid.UUID,
        suggestion: SuggestedChallenge,
    ) -> None:
        """Adopt ``suggestion`` into the session draft and complete the ai-chat step.

        Any earlier selection on the conversation is overwritten. Draft fields
        the suggestion does not cover (guarantors, notifications) are kept.
        """
        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        cid = parse_uuid(conversation_id, "Conversation")

        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, sid, uid)
            require_active(session)
            conversation = await _load_owned_conversation(db, cid, uid)

            conversation.selected_challenge = suggestion.model_dump(mode="json")

            draft = load_draft(session.challenge_draft).model_copy(
                update={
                    "title": suggestion.title,
                    "description": suggestion.description,
                    "type": suggestion.type,
                    "frequency": suggestion.suggested_frequency,
                    "duration_days": suggestion.suggested_duration,
                    "deposit_amount": suggestion.suggested_deposit,
                    "ai_suggested": True,
                    "ai_conversation_id": str(conversation.id),
                }
            )
            await apply_draft(db, session, draft)
            session.ai_conversation_id = conversation.id
            await apply_complete_step(db, session, OnboardingStep.AI_CHAT)

            await record_event(
                db,
                sid,
                uid,
                AnalyticsEventType.CHALLENGE_SELECTED,
                step_name=AI_CHAT,
                event_data={"challenge_title": suggestion.title, "challenge_type": suggestion.type},
            )
