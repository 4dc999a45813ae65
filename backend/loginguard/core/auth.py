# backend/loginguard/core/auth.py
"""
FastAPI dependencies for the auth collaborators.

The rate limiter and identity provider are owned by the application
(created in the lifespan and stored on app.state) and injected per request,
so tests can swap them through dependency_overrides.
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from loginguard.core.rate_limit import AuthRateGuard
from loginguard.services.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    build_identity_provider,
)
from loginguard.services.login_orchestrator import LoginOrchestrator

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_provider(request: Request) -> IdentityProvider:
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        provider = build_identity_provider()
        request.app.state.identity_provider = provider
    return provider


def get_rate_guard(request: Request) -> AuthRateGuard:
    guard = getattr(request.app.state, "auth_rate_guard", None)
    if guard is None:
        guard = AuthRateGuard()
        request.app.state.auth_rate_guard = guard
    return guard


def get_login_orchestrator(
    rate_guard: AuthRateGuard = Depends(get_rate_guard),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> LoginOrchestrator:
    return LoginOrchestrator(rate_guard=rate_guard, identity_provider=identity_provider)


def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_user(
    access_token: str = Depends(get_access_token),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> dict:
    """Resolve the bearer token to the provider's user record."""
    try:
        user = await identity_provider.get_user(access_token)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except IdentityProviderError as e:
        logger.error(f"Identity provider unavailable while resolving subject: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from e

    if not user.get("id"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


async def get_current_subject(user: dict = Depends(get_current_user)) -> str:
    return str(user["id"])
