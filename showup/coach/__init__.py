"""Discovery coach strategies."""

from showup.coach.base import ChallengeCoach, CoachReply
from showup.coach.keyword import KeywordCoach

__all__ = ["ChallengeCoach", "CoachReply", "KeywordCoach"]
