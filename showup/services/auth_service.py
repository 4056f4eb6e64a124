"""AuthService: registration, login, refresh-token rotation."""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showup.core.exceptions import AuthError, ConflictError, NotFoundError, ValidationError
from showup.core.ids import parse_uuid
from showup.core.security import (
    TokenKind,
    hash_password,
    issue_token,
    refresh_token_expiry,
    validate_email,
    validate_password,
    verify_password,
    verify_token,
)
from showup.db.models.auth_session import AuthSession
from showup.db.models.user import User

logger = structlog.get_logger(__name__)


@dataclass
class ClientInfo:
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str


def _issue_pair(user: User) -> IssuedTokens:
    return IssuedTokens(
        access_token=issue_token(str(user.id), user.email, TokenKind.ACCESS),
        refresh_token=issue_token(str(user.id), user.email, TokenKind.REFRESH),
    )


class AuthService:
    """Credential lifecycle backed by the users and auth_sessions tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def register(
        self,
        email: str,
        password: str,
        username: str | None = None,
        client: ClientInfo | None = None,
    ) -> tuple[User, IssuedTokens]:
        """Create a user and open an auth session.

        Raises:
            ValidationError: Missing or malformed email, or weak password
            ConflictError: Email or username already registered
        """
        if not email or not password:
            raise ValidationError("email and password are required")
        if not validate_email(email):
            raise ValidationError("email: invalid email format")
        reason = validate_password(password)
        if reason:
            raise ValidationError(reason)

        email = email.strip().lower()
        username = (username or "").strip() or None
        client = client or ClientInfo()

        async with self.session_factory() as db:
            existing = await db.execute(select(User.id).where(User.email == email))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("User with this email already exists")
            if username is not None:
                taken = await db.execute(select(User.id).where(User.username == username))
                if taken.scalar_one_or_none() is not None:
                    raise ConflictError("Username is already taken")

            user = User(email=email, username=username, password_hash=hash_password(password))
            db.add(user)
            try:
                await db.flush()
            except IntegrityError:
                # Lost a race with a concurrent registration
                await db.rollback()
                raise ConflictError("User with this email already exists")

            tokens = _issue_pair(user)
            db.add(
                AuthSession(
                    user_id=user.id,
                    refresh_token=tokens.refresh_token,
                    expires_at=refresh_token_expiry(),
                    user_agent=client.user_agent,
                    ip_address=client.ip_address,
                )
            )
            await db.commit()

        logger.info("user_registered", user_id=str(user.id))
        return user, tokens

    async def login(self, email: str, password: str, client: ClientInfo | None = None) -> tuple[User, IssuedTokens]:
        """Verify credentials and open an auth session.

        Raises:
            ValidationError: Missing email or password
            AuthError: Unknown email or wrong password (401), deactivated account (403)
        """
        if not email or not password:
            raise ValidationError("email and password are required")
        client = client or ClientInfo()

        async with self.session_factory() as db:
            result = await db.execute(select(User).where(User.email == email.strip().lower()))
            user = result.scalar_one_or_none()
            if user is None or not verify_password(password, user.password_hash):
                raise AuthError("Invalid email or password")
            if not user.is_active:
                raise AuthError("Account is deactivated", forbidden=True)

            tokens = _issue_pair(user)
            db.add(
                AuthSession(
                    user_id=user.id,
                    refresh_token=tokens.refresh_token,
                    expires_at=refresh_token_expiry(),
                    user_agent=client.user_agent,
                    ip_address=client.ip_address,
                )
            )
            await db.commit()

        logger.info("user_logged_in", user_id=str(user.id))
        return user, tokens

    async def refresh(self, refresh_token: str, client: ClientInfo | None = None) -> IssuedTokens:
        """Rotate a refresh token. The same auth session row is overwritten."""
        claims = verify_token(refresh_token or "")
        if claims is None or claims.kind != TokenKind.REFRESH:
            raise AuthError("Invalid refresh token")
        client = client or ClientInfo()

        async with self.session_factory() as db, db.begin():
            result = await db.execute(
                select(AuthSession).where(
                    AuthSession.refresh_token == refresh_token,
                    AuthSession.expires_at > datetime.now(timezone.utc),
                )
            )
            auth_session = result.scalar_one_or_none()
            if auth_session is None:
                raise AuthError("Refresh token expired or revoked")

            user = await db.get(User, auth_session.user_id)
            if user is None:
                raise AuthError("Invalid refresh token")
            if not user.is_active:
                raise AuthError("Account is deactivated", forbidden=True)

            tokens = _issue_pair(user)
            auth_session.refresh_token = tokens.refresh_token
            auth_session.expires_at = refresh_token_expiry()
            auth_session.user_agent = client.user_agent
            auth_session.ip_address = client.ip_address

        return tokens

    async def get_user(self, user_id: str) -> User:
        uid = parse_uuid(user_id, "User")
        async with self.session_factory() as db:
            user = await db.get(User, uid)
        if user is None or not user.is_active:
            raise NotFoundError("User not found")
        return user
