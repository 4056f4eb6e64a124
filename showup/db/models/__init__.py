"""Re-export all models so Base.metadata sees them."""

from showup.db.models.ai_conversation import AIConversation
from showup.db.models.analytics_event import AnalyticsEvent
from showup.db.models.auth_session import AuthSession
from showup.db.models.challenge import Challenge
from showup.db.models.onboarding_session import OnboardingSession
from showup.db.models.payment_settlement import PaymentSettlement
from showup.db.models.user import User

__all__ = [
    "AIConversation",
    "AnalyticsEvent",
    "AuthSession",
    "Challenge",
    "OnboardingSession",
    "PaymentSettlement",
    "User",
]
