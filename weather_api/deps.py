"""
FastAPI dependencies: services from app state, bearer-token authentication
and role gates.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from .errors import AuthError
from .models import UserRole
from .security import Identity, has_role
from .services import AuthService, WeatherService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_weather_service(request: Request) -> WeatherService:
    return request.app.state.weather_service


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def authenticate(request: Request) -> Identity:
    """
    Resolve the bearer token into an Identity and attach it to request.state.

    - no token      -> 401
    - invalid token -> 403
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        identity = request.app.state.token_service.verify(token)
    except AuthError:
        raise HTTPException(status_code=403, detail="Invalid or expired token")

    request.state.identity = identity
    return identity


def require_roles(*roles: UserRole):
    """
    Dependency factory: the authenticated role must be one of `roles`.
    Expects authenticate() to have run first.
    """
    allowed = frozenset(roles)

    async def checker(request: Request) -> Identity:
        identity = getattr(request.state, "identity", None)
        if identity is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        if not has_role(identity.role, allowed):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return checker


async def require_admin(
    _: Identity = Depends(authenticate),
    identity: Identity = Depends(require_roles(UserRole.ADMIN)),
) -> Identity:
    return identity


async def require_user(
    _: Identity = Depends(authenticate),
    identity: Identity = Depends(require_roles(UserRole.USER, UserRole.ADMIN)),
) -> Identity:
    """Any authenticated caller."""
    return identity
