"""AIConversation model: discovery transcript and the suggestions it produced."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Uuid

from showup.db.base import Base, UTCDateTime


class AIConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    onboarding_session_id = Column(Uuid, nullable=True, index=True)

    messages = Column(JSON, nullable=False, default=list)  # append-only list[AIMessage]
    suggested_challenges = Column(JSON, nullable=False, default=list)  # list[SuggestedChallenge]
    selected_challenge = Column(JSON, nullable=True)  # at most one

    model_used = Column(String(100), nullable=True)
    total_tokens_used = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
