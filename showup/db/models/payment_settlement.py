"""PaymentSettlement model: settlement dedupe key and reconciliation queue.

The provider session id is the primary key, so a second delivery of the same
payment notification cannot claim it again. Rows left ``deferred`` or
``failed`` are retried by reconciliation.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Integer, Numeric, String, Text

from showup.db.base import Base, UTCDateTime


class PaymentSettlement(Base):
    __tablename__ = "payment_settlements"

    provider_session_id = Column(String(255), primary_key=True)
    challenge_id = Column(String(64), nullable=True, index=True)
    payer_email = Column(String(255), nullable=False, default="")
    amount_usd = Column(Numeric(12, 2), nullable=False)
    duration_days = Column(Integer, nullable=False)
    guarantors = Column(JSON, nullable=False, default=list)
    challenge_title = Column(String(255), nullable=True)
    metadata_uri = Column(Text, nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    test_mode = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default="processing", index=True)  # processing, deferred, settled, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    on_chain_id = Column(String(80), nullable=True)
    transaction_hash = Column(String(80), nullable=True)
    block_number = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
