"""ChallengeCoach protocol: the swappable discovery response strategy.

A coach sees only the transcript it is handed and the latest user text.
It holds no per-conversation state, so the conversation manager can swap the
keyword placeholder for a model-backed coach without touching persistence.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from showup.schemas.onboarding import AIMessage, SuggestedChallenge


@dataclass
class CoachReply:
    """Assistant text plus an optional structured suggestion."""

    content: str
    suggestion: SuggestedChallenge | None = None
    model: str | None = None
    tokens_used: int = 0


@runtime_checkable
class ChallengeCoach(Protocol):
    async def generate(self, transcript: list[AIMessage], latest_user_text: str) -> CoachReply:
        """Produce the next assistant reply.

        Args:
            transcript: Full conversation so far, including the latest user message
            latest_user_text: The message the user just sent

        Returns:
            CoachReply with response text and at most one suggestion
        """
        ...
