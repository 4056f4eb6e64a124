from fastapi import APIRouter

from showup.api.routes import auth, health, onboarding, payments

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(onboarding.router, prefix="/onboarding", tags=["onboarding"])
api_router.include_router(payments.router, prefix="/stripe", tags=["payments"])
