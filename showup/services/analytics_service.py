"""Onboarding analytics: append-only event recording and funnel metrics."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showup.core.ids import parse_uuid
from showup.core.exceptions import NotFoundError
from showup.db.models.analytics_event import AnalyticsEvent
from showup.db.models.challenge import Challenge
from showup.db.models.onboarding_session import OnboardingSession
from showup.domain.events import AnalyticsEventType


async def record_event(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    event_type: AnalyticsEventType,
    step_name: str | None = None,
    event_data: dict[str, Any] | None = None,
    time_spent_seconds: int | None = None,
) -> AnalyticsEvent:
    """Add an event to the caller's unit of work.

    The event commits or rolls back together with the caller's other writes.
    """
    event = AnalyticsEvent(
        session_id=session_id,
        user_id=user_id,
        event_type=event_type.value,
        step_name=step_name,
        event_data=event_data or {},
        time_spent_seconds=time_spent_seconds,
    )
    db.add(event)
    return event


class AnalyticsService:
    """Read side of the onboarding analytics trail."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_session_events(self, user_id: str, session_id: str | uuid.UUID) -> list[AnalyticsEvent]:
        """Events for one of the caller's sessions, in insertion order.

        Raises:
            NotFoundError: If the session does not exist or belongs to another user
        """
        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        async with self.session_factory() as db:
            owned = await db.execute(
                select(OnboardingSession.id).where(
                    OnboardingSession.id == sid,
                    OnboardingSession.user_id == uid,
                )
            )
            if owned.scalar_one_or_none() is None:
                raise NotFoundError("Session not found")

            result = await db.execute(
                select(AnalyticsEvent)
                .where(AnalyticsEvent.session_id == sid)
                .order_by(AnalyticsEvent.id)
            )
            return list(result.scalars().all())

    async def get_onboarding_metrics(self, start: datetime | None = None, end: datetime | None = None) -> dict:
        """Funnel metrics for sessions started within [start, end)."""
        async with self.session_factory() as db:
            session_filters = []
            event_filters = [AnalyticsEvent.event_type == AnalyticsEventType.STEP_STARTED.value]
            challenge_filters = []
            if start is not None:
                session_filters.append(OnboardingSession.started_at >= start)
                event_filters.append(AnalyticsEvent.created_at >= start)
                challenge_filters.append(Challenge.created_at >= start)
            if end is not None:
                session_filters.append(OnboardingSession.started_at < end)
                event_filters.append(AnalyticsEvent.created_at < end)
                challenge_filters.append(Challenge.created_at < end)

            counts = await db.execute(
                select(
                    func.count(OnboardingSession.id),
                    func.count(OnboardingSession.completed_at),
                    func.count(OnboardingSession.abandoned_at),
                ).where(*session_filters)
            )
            total, completed, abandoned = counts.one()

            durations = await db.execute(
                select(OnboardingSession.started_at, OnboardingSession.completed_at).where(
                    OnboardingSession.completed_at.is_not(None), *session_filters
                )
            )
            seconds = [(done - began).total_seconds() for began, done in durations.all()]

            steps = await db.execute(
                select(AnalyticsEvent.step_name, func.count(AnalyticsEvent.id))
                .where(*event_filters)
                .group_by(AnalyticsEvent.step_name)
            )

            types = await db.execute(
                select(Challenge.challenge_type, func.count(Challenge.id).label("n"))
                .where(*challenge_filters)
                .group_by(Challenge.challenge_type)
                .order_by(func.count(Challenge.id).desc())
                .limit(10)
            )

        return {
            "total_sessions": total,
            "completed_sessions": completed,
            "abandoned_sessions": abandoned,
            "completion_rate": (completed / total) if total else 0.0,
            "avg_completion_seconds": (sum(seconds) / len(seconds)) if seconds else None,
            "step_started_counts": {step: n for step, n in steps.all() if step},
            "popular_challenge_types": [{"type": t, "count": n} for t, n in types.all()],
        }
