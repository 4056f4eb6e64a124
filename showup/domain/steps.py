"""Onboarding step ordering and navigation rules.

Pure domain logic with no external dependencies.
"""
from dataclasses import dataclass
from enum import Enum


class OnboardingStep(str, Enum):
    """Wizard steps. Declaration order is the fixed step sequence."""

    TERMS = "terms"
    AI_CHAT = "ai-chat"
    CHALLENGE_DEFINITION = "challenge-definition"
    RESOLUTION = "resolution"
    DEPOSIT = "deposit"
    NOTIFICATIONS = "notifications"
    ACTIVITY_RATE = "activity-rate"
    SHARING = "sharing"


ONBOARDING_STEPS: tuple[OnboardingStep, ...] = tuple(OnboardingStep)
FIRST_STEP = ONBOARDING_STEPS[0]
TERMINAL_STEP = ONBOARDING_STEPS[-1]


@dataclass
class TransitionResult:
    """Result of a navigation attempt."""

    allowed: bool
    reason: str = ""
    new_step: OnboardingStep | None = None


def successor(step: OnboardingStep) -> OnboardingStep | None:
    """Return the fixed next step, or None for the terminal step."""
    index = ONBOARDING_STEPS.index(step)
    if index + 1 < len(ONBOARDING_STEPS):
        return ONBOARDING_STEPS[index + 1]
    return None


def predecessor(step: OnboardingStep) -> OnboardingStep | None:
    index = ONBOARDING_STEPS.index(step)
    if index > 0:
        return ONBOARDING_STEPS[index - 1]
    return None


def parse_step(value: str) -> OnboardingStep | None:
    try:
        return OnboardingStep(value)
    except ValueError:
        return None


def validate_transition(target: OnboardingStep, completed: list[str] | set[str]) -> TransitionResult:
    """Decide whether the wizard may move to ``target``.

    Pure function -- no side effects, no DB access.

    Rules:
        - The first step is always reachable
        - Any other step is reachable only when its predecessor is completed

    The completed set never shrinks, so every step the user has already
    reached stays reachable and backward navigation always succeeds.
    """
    previous = predecessor(target)
    if previous is None:
        return TransitionResult(True, new_step=target)

    if previous.value not in completed:
        return TransitionResult(False, f"Step '{target.value}' requires '{previous.value}' to be completed first")

    return TransitionResult(True, new_step=target)


def add_completed(completed: list[str], step: OnboardingStep) -> list[str]:
    """Return ``completed`` with ``step`` appended unless already present."""
    if step.value in completed:
        return list(completed)
    return [*completed, step.value]
