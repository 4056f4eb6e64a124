"""Challenge model: a finalized draft and its settlement status."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Numeric, String, Text, Uuid

from showup.db.base import Base, UTCDateTime


class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id = Column(String(64), nullable=False, unique=True, index=True)  # public id
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_email = Column(String(255), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    duration_days = Column(Integer, nullable=False)
    amount_usd = Column(Numeric(12, 2), nullable=False)
    guarantors = Column(JSON, nullable=False, default=list)

    challenge_type = Column(String(30), nullable=False, default="custom")
    resolution_method = Column(Text, nullable=False, default="")
    frequency = Column(String(30), nullable=False, default="daily")
    frequency_details = Column(JSON, nullable=True)
    notification_settings = Column(JSON, nullable=True)
    deposit_recipient = Column(String(30), nullable=False, default="platform")
    linked_friend_email = Column(String(255), nullable=True)
    ai_conversation_id = Column(Uuid, nullable=True)
    ai_suggested = Column(Boolean, nullable=False, default=False)
    metadata_uri = Column(Text, nullable=True)

    # pending, payment_pending, escrow_pending, settled, failed
    status = Column(String(30), nullable=False, default="pending", index=True)
    payment_session_id = Column(String(255), nullable=True, index=True)
    on_chain_id = Column(String(80), nullable=True)
    transaction_hash = Column(String(80), nullable=True)
    block_number = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
