"""Auth routes: register, login, refresh, current user."""

from fastapi import APIRouter, Depends, Request

from showup.core.auth import AuthenticatedUser, require_auth
from showup.db.base import get_session_factory
from showup.db.models.user import User
from showup.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from showup.services.auth_service import AuthService, ClientInfo

router = APIRouter()


def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        username=user.username,
        wallet_address=user.wallet_address,
        email_verified=user.email_verified,
        terms_accepted_at=user.terms_accepted_at,
        onboarding_completed_at=user.onboarding_completed_at,
        created_at=user.created_at,
    )


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, request: Request):
    """Create an account and return a fresh token pair."""
    service = AuthService(get_session_factory())
    user, tokens = await service.register(body.email, body.password, body.username, _client_info(request))
    return AuthResponse(
        user=_user_response(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, request: Request):
    service = AuthService(get_session_factory())
    user, tokens = await service.login(body.email, body.password, _client_info(request))
    return AuthResponse(
        user=_user_response(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(body: RefreshRequest, request: Request):
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    service = AuthService(get_session_factory())
    tokens = await service.refresh(body.refresh_token, _client_info(request))
    return TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.get("/me", response_model=UserResponse)
async def me(user: AuthenticatedUser = Depends(require_auth)):
    service = AuthService(get_session_factory())
    return _user_response(await service.get_user(user.user_id))
