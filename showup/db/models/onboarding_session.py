"""OnboardingSession model: server-persisted wizard progress."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Uuid, text

from showup.db.base import Base, UTCDateTime

_ACTIVE = text("completed_at IS NULL AND abandoned_at IS NULL")


class OnboardingSession(Base):
    __tablename__ = "onboarding_sessions"
    __table_args__ = (
        # At most one active session per user
        Index(
            "uq_onboarding_sessions_active_user",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    current_step = Column(String(40), nullable=False, default="terms")
    steps_completed = Column(JSON, nullable=False, default=list)  # completion order
    challenge_draft = Column(JSON, nullable=False, default=dict)  # ChallengeDraft
    ai_messages = Column(JSON, nullable=False, default=list)  # list[AIMessage]
    ai_conversation_id = Column(Uuid, nullable=True)  # weak reference, no FK
    schema_version = Column(Integer, nullable=False, default=1)

    started_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(UTCDateTime, nullable=True)
    abandoned_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.completed_at is None and self.abandoned_at is None
