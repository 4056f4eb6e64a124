"""AnalyticsEvent model: append-only onboarding audit trail."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Integer, String, Uuid

from showup.db.base import Base, UTCDateTime


class AnalyticsEvent(Base):
    __tablename__ = "onboarding_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    session_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)

    event_type = Column(String(50), nullable=False, index=True)
    step_name = Column(String(40), nullable=True)
    event_data = Column(JSON, nullable=False, default=dict)
    time_spent_seconds = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    # NO updated_at -- events are immutable
