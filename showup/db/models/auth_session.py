"""AuthSession model: one refresh credential per login, overwritten on refresh."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, String, Text, Uuid

from showup.db.base import Base, UTCDateTime


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token = Column(Text, nullable=False, unique=True)
    expires_at = Column(UTCDateTime, nullable=False)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
