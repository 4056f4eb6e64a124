"""OnboardingService: the step-sequencing engine behind the onboarding wizard.

Responsibilities:
- One active session per user, created lazily
- Step navigation gated on the completed set (see showup.domain.steps)
- Incremental challenge draft and transcript mirror with validate-on-read
- Analytics events written in the same transaction as the change they describe
- Atomic finalize: challenge row, session stamp, user stamp and event together

Every mutation runs inside ``session.begin()``; any error rolls back all of it.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pydantic
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showup.core.config import get_settings
from showup.core.exceptions import InternalError, NotFoundError, ValidationError
from showup.core.ids import new_challenge_id, parse_uuid
from showup.core.security import validate_email
from showup.db.models.challenge import Challenge
from showup.db.models.onboarding_session import OnboardingSession
from showup.db.models.user import User
from showup.domain.events import AnalyticsEventType
from showup.domain.steps import (
    FIRST_STEP,
    ONBOARDING_STEPS,
    TERMINAL_STEP,
    OnboardingStep,
    add_completed,
    parse_step,
    successor,
    validate_transition,
)
from showup.schemas.onboarding import SCHEMA_VERSION, AIMessage, ChallengeDraft, SessionPatchRequest
from showup.services.analytics_service import record_event

logger = structlog.get_logger(__name__)

DEFAULT_DURATION_DAYS = 14
DEFAULT_CHALLENGE_TYPE = "custom"
DEFAULT_FREQUENCY = "daily"
DEFAULT_DEPOSIT_RECIPIENT = "platform"
MIN_DEPOSIT_USD = 1

_messages_adapter = pydantic.TypeAdapter(list[AIMessage])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _optional_uuid(value: str | None) -> uuid.UUID | None:
    try:
        return uuid.UUID(value) if value else None
    except ValueError:
        return None


# ── Embedded document loading ───────────────────────────────────────


def load_draft(raw: dict | None) -> ChallengeDraft:
    try:
        return ChallengeDraft.model_validate(raw or {})
    except pydantic.ValidationError as exc:
        logger.error("challenge_draft_invalid_on_read", errors=exc.errors(include_url=False))
        raise InternalError("stored challenge draft failed validation") from exc


def load_messages(raw: list | None) -> list[AIMessage]:
    try:
        return _messages_adapter.validate_python(raw or [])
    except pydantic.ValidationError as exc:
        logger.error("ai_messages_invalid_on_read", errors=exc.errors(include_url=False))
        raise InternalError("stored transcript failed validation") from exc


def dump_messages(messages: list[AIMessage]) -> list[dict]:
    return [m.model_dump(mode="json") for m in messages]


# ── Shared mutation helpers (caller owns the transaction) ───────────


async def load_owned_session(db: AsyncSession, session_id: uuid.UUID, user_id: uuid.UUID) -> OnboardingSession:
    result = await db.execute(
        select(OnboardingSession).where(
            OnboardingSession.id == session_id,
            OnboardingSession.user_id == user_id,
        )
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("Session not found")
    return session


def require_active(session: OnboardingSession) -> None:
    if not session.is_active:
        raise ValidationError("session_id: session is already completed or abandoned")


async def apply_complete_step(
    db: AsyncSession,
    session: OnboardingSession,
    step: OnboardingStep,
    skipped: bool = False,
) -> bool:
    """Mark ``step`` completed and move to its successor.

    Returns False (and changes nothing) when the step was already completed.
    """
    if step == TERMINAL_STEP:
        raise ValidationError(f"complete_step: '{step.value}' is completed by finalizing onboarding")

    if step.value in (session.steps_completed or []):
        return False

    session.steps_completed = add_completed(session.steps_completed or [], step)
    session.current_step = successor(step).value

    event_type = AnalyticsEventType.STEP_SKIPPED if skipped else AnalyticsEventType.STEP_COMPLETED
    await record_event(db, session.id, session.user_id, event_type, step_name=step.value)
    return True


async def apply_transition(
    db: AsyncSession,
    session: OnboardingSession,
    target: OnboardingStep,
    time_spent_seconds: int | None = None,
) -> None:
    result = validate_transition(target, session.steps_completed or [])
    if not result.allowed:
        raise ValidationError(f"current_step: {result.reason}")

    previous = session.current_step
    if previous == target.value:
        return

    session.current_step = target.value
    await record_event(
        db,
        session.id,
        session.user_id,
        AnalyticsEventType.STEP_STARTED,
        step_name=target.value,
        event_data={"previous_step": previous, "previous_time_spent": time_spent_seconds},
        time_spent_seconds=time_spent_seconds,
    )

    previous_step = parse_step(previous)
    if previous_step is not None and ONBOARDING_STEPS.index(target) < ONBOARDING_STEPS.index(previous_step):
        await record_event(
            db,
            session.id,
            session.user_id,
            AnalyticsEventType.STEP_RETURNED,
            step_name=target.value,
            event_data={"from_step": previous},
        )


async def apply_draft(db: AsyncSession, session: OnboardingSession, draft: ChallengeDraft) -> None:
    """Replace the stored draft and record deposit / guarantor changes."""
    old = load_draft(session.challenge_draft)
    session.challenge_draft = draft.to_storage()

    if draft.deposit_amount is not None and draft.deposit_amount != old.deposit_amount:
        await record_event(
            db,
            session.id,
            session.user_id,
            AnalyticsEventType.DEPOSIT_AMOUNT_CHANGED,
            step_name=session.current_step,
            event_data={"previous_amount": old.deposit_amount, "new_amount": draft.deposit_amount},
        )

    old_guarantors = old.guarantors or []
    new_guarantors = draft.guarantors or []
    added = [g for g in new_guarantors if g not in old_guarantors]
    removed = [g for g in old_guarantors if g not in new_guarantors]
    for _ in added:
        await record_event(
            db,
            session.id,
            session.user_id,
            AnalyticsEventType.GUARANTOR_ADDED,
            step_name=session.current_step,
            event_data={"guarantor_count": len(new_guarantors)},
        )
    for _ in removed:
        await record_event(
            db,
            session.id,
            session.user_id,
            AnalyticsEventType.GUARANTOR_REMOVED,
            step_name=session.current_step,
            event_data={"guarantor_count": len(new_guarantors)},
        )


def apply_messages(session: OnboardingSession, messages: list[AIMessage]) -> None:
    """Replace the transcript mirror. The stored transcript must be a prefix of the new one."""
    stored = dump_messages(load_messages(session.ai_messages))
    incoming = dump_messages(messages)
    if incoming[: len(stored)] != stored:
        raise ValidationError("ai_messages: transcript is append-only; existing messages cannot be changed or removed")
    session.ai_messages = incoming


class OnboardingService:
    """Service layer for the onboarding wizard."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _active_session(self, db: AsyncSession, user_id: uuid.UUID) -> OnboardingSession | None:
        result = await db.execute(
            select(OnboardingSession).where(
                OnboardingSession.user_id == user_id,
                OnboardingSession.completed_at.is_(None),
                OnboardingSession.abandoned_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> tuple[OnboardingSession, bool]:
        """Return the user's active session, creating one at the first step if needed.

        Args:
            user_id: Authenticated user id

        Returns:
            (session, terms_accepted)
        """
        uid = parse_uuid(user_id, "User")
        async with self.session_factory() as db:
            session = await self._active_session(db, uid)
            if session is None:
                session = OnboardingSession(
                    user_id=uid,
                    current_step=FIRST_STEP.value,
                    steps_completed=[],
                    challenge_draft={},
                    ai_messages=[],
                    schema_version=SCHEMA_VERSION,
                )
                db.add(session)
                try:
                    await db.flush()
                    await record_event(
                        db, session.id, uid, AnalyticsEventType.SESSION_STARTED, step_name=FIRST_STEP.value
                    )
                    await db.commit()
                    logger.info("onboarding_session_started", user_id=str(uid), session_id=str(session.id))
                except IntegrityError:
                    # A concurrent request created the active session first
                    await db.rollback()
                    session = await self._active_session(db, uid)
                    if session is None:
                        raise InternalError("active onboarding session vanished after conflict")

            user = await db.get(User, uid)
            terms_accepted = user is not None and user.terms_accepted_at is not None
            return session, terms_accepted

    async def transition(
        self,
        user_id: str,
        session_id: str | uuid.UUID,
        target: OnboardingStep,
        time_spent_seconds: int | None = None,
    ) -> OnboardingSession:
        """Move the wizard to ``target``.

        Raises:
            NotFoundError: If the session does not exist or belongs to another user
            ValidationError: If ``target`` is not reachable or the session is closed
        """
        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, sid, uid)
            require_active(session)
            await apply_transition(db, session, target, time_spent_seconds)
        return session

    async def complete_step(
        self,
        user_id: str,
        session_id: str | uuid.UUID,
        step: OnboardingStep,
        skipped: bool = False,
    ) -> OnboardingSession:
        """Add ``step`` to the completed set and advance to its successor. Idempotent."""
        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, sid, uid)
            require_active(session)
            await apply_complete_step(db, session, step, skipped)
        return session

    async def patch(self, user_id: str, update: SessionPatchRequest) -> OnboardingSession:
        """Apply a partial update in one transaction.

        Either every part of the update lands or none of it does.
        """
        uid = parse_uuid(user_id, "User")
        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, update.session_id, uid)
            require_active(session)

            if update.complete_step is not None:
                await apply_complete_step(db, session, update.complete_step, update.skipped)
            if update.current_step is not None:
                await apply_transition(db, session, update.current_step, update.time_spent_seconds)
            if update.challenge_draft is not None:
                await apply_draft(db, session, update.challenge_draft)
            if update.ai_messages is not None:
                apply_messages(session, update.ai_messages)
        return session

    async def accept_terms(
        self,
        user_id: str,
        session_id: str | uuid.UUID | None = None,
        terms_version: str | None = None,
    ) -> tuple[User, OnboardingSession | None]:
        """Stamp the user's terms acceptance once and complete the terms step.

        A repeat acceptance keeps the original timestamp and version.
        """
        uid = parse_uuid(user_id, "User")
        version = terms_version or get_settings().terms_version
        async with self.session_factory() as db, db.begin():
            user = await db.get(User, uid)
            if user is None or not user.is_active:
                raise NotFoundError("User not found")

            if user.terms_accepted_at is None:
                user.terms_accepted_at = _now()
                user.terms_version = version

            session = None
            if session_id is not None:
                session = await load_owned_session(db, parse_uuid(session_id, "Session"), uid)
                require_active(session)
                if await apply_complete_step(db, session, OnboardingStep.TERMS):
                    await record_event(
                        db,
                        session.id,
                        uid,
                        AnalyticsEventType.TERMS_ACCEPTED,
                        step_name=OnboardingStep.TERMS.value,
                        event_data={"terms_version": user.terms_version},
                    )
        return user, session

    async def abandon(self, user_id: str, session_id: str | uuid.UUID) -> OnboardingSession:
        uid = parse_uuid(user_id, "User")
        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, parse_uuid(session_id, "Session"), uid)
            require_active(session)
            session.abandoned_at = _now()
            await record_event(
                db,
                session.id,
                uid,
                AnalyticsEventType.SESSION_ABANDONED,
                step_name=session.current_step,
                event_data={"steps_completed": list(session.steps_completed or [])},
            )
        logger.info("onboarding_session_abandoned", user_id=str(uid), session_id=str(session.id))
        return session

    # ── Finalize ────────────────────────────────────────────────────

    @staticmethod
    def validate_for_finalize(draft: ChallengeDraft) -> None:
        """Check the fields a challenge cannot be created without.

        Raises:
            ValidationError: Naming the first missing or invalid field
        """
        if not (draft.title or "").strip():
            raise ValidationError("title is required")
        if not (draft.description or "").strip():
            raise ValidationError("description is required")
        if draft.deposit_amount is None or draft.deposit_amount < MIN_DEPOSIT_USD:
            raise ValidationError(f"deposit_amount must be at least {MIN_DEPOSIT_USD}")
        if not draft.guarantors:
            raise ValidationError("guarantors must include at least one guarantor")
        for guarantor in draft.guarantors:
            if not validate_email(guarantor):
                raise ValidationError(f"guarantors: '{guarantor}' is not a valid email address")
        if draft.duration_days is not None and draft.duration_days < 1:
            raise ValidationError("duration_days must be at least 1")

    async def finalize(
        self,
        user_id: str,
        session_id: str | uuid.UUID,
        draft: ChallengeDraft | None = None,
    ) -> Challenge:
        """Freeze the draft into a pending Challenge and close the session.

        The challenge insert, session completion, user stamp and
        ``session_completed`` event commit together or not at all.

        Args:
            user_id: Authenticated user id
            session_id: Active onboarding session id
            draft: Final draft; the stored draft is used when omitted

        Returns:
            The new Challenge with status ``pending``

        Raises:
            NotFoundError: Unknown or foreign session, or missing user
            ValidationError: Closed session or incomplete draft
        """
        uid = parse_uuid(user_id, "User")
        sid = parse_uuid(session_id, "Session")
        async with self.session_factory() as db, db.begin():
            session = await load_owned_session(db, sid, uid)
            require_active(session)

            final = draft if draft is not None else load_draft(session.challenge_draft)
            self.validate_for_finalize(final)

            user = await db.get(User, uid)
            if user is None or not user.is_active:
                raise NotFoundError("User not found")

            challenge = await self._insert_challenge(db, session, user, final)
            await self._mark_session_completed(db, session, final)
            await self._mark_user_onboarded(db, user)
            await self._record_completion(db, session, challenge)

        logger.info(
            "onboarding_finalized",
            user_id=str(uid),
            session_id=str(sid),
            challenge_id=challenge.challenge_id,
        )
        return challenge

    async def _insert_challenge(
        self,
        db: AsyncSession,
        session: OnboardingSession,
        user: User,
        draft: ChallengeDraft,
    ) -> Challenge:
        challenge = Challenge(
            challenge_id=new_challenge_id(),
            user_id=user.id,
            user_email=user.email,
            title=draft.title.strip(),
            description=draft.description.strip(),
            duration_days=draft.duration_days or DEFAULT_DURATION_DAYS,
            amount_usd=Decimal(str(draft.deposit_amount)),
            guarantors=list(draft.guarantors),
            challenge_type=draft.type or DEFAULT_CHALLENGE_TYPE,
            resolution_method=draft.resolution_method or "",
            frequency=draft.frequency or DEFAULT_FREQUENCY,
            frequency_details=draft.frequency_details.model_dump(mode="json") if draft.frequency_details else None,
            notification_settings=(
                draft.notification_settings.model_dump(mode="json") if draft.notification_settings else None
            ),
            deposit_recipient=draft.deposit_recipient or DEFAULT_DEPOSIT_RECIPIENT,
            linked_friend_email=draft.linked_friend_email,
            ai_conversation_id=_optional_uuid(draft.ai_conversation_id),
            ai_suggested=bool(draft.ai_suggested),
            status="pending",
        )
        db.add(challenge)
        await db.flush()
        return challenge

    async def _mark_session_completed(self, db: AsyncSession, session: OnboardingSession, draft: ChallengeDraft) -> None:
        session.challenge_draft = draft.to_storage()
        session.steps_completed = add_completed(session.steps_completed or [], TERMINAL_STEP)
        session.current_step = TERMINAL_STEP.value
        session.completed_at = _now()
        await db.flush()

    async def _mark_user_onboarded(self, db: AsyncSession, user: User) -> None:
        if user.onboarding_completed_at is None:
            user.onboarding_completed_at = _now()
        await db.flush()

    async def _record_completion(self, db: AsyncSession, session: OnboardingSession, challenge: Challenge) -> None:
        await record_event(
            db,
            session.id,
            session.user_id,
            AnalyticsEventType.SESSION_COMPLETED,
            step_name=TERMINAL_STEP.value,
            event_data={
                "challenge_id": challenge.challenge_id,
                "challenge_type": challenge.challenge_type,
                "deposit_amount": float(challenge.amount_usd),
                "guarantor_count": len(challenge.guarantors),
            },
        )
