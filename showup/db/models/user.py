"""User model: identity, credential hash and one-time lifecycle stamps."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, String, Uuid

from showup.db.base import Base, UTCDateTime


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)  # stored lowercased
    username = Column(String(50), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=False)
    wallet_address = Column(String(42), nullable=True)

    email_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Written at most once each
    terms_accepted_at = Column(UTCDateTime, nullable=True)
    terms_version = Column(String(20), nullable=True)
    onboarding_completed_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
