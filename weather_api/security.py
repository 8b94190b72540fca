"""
Tokens, passwords and roles.

Tokens are HS256 JWTs carrying {userId, email, role}. The server keeps no
token state: a token is valid iff its signature checks out and it has not
expired.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import bcrypt
import jwt

from .errors import AuthError
from .models import UserRole

logger = logging.getLogger(__name__)

# Weak default, acceptable only for local development.
FALLBACK_SECRET = "fallback-secret"

_ALGORITHM = "HS256"
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


@dataclass(frozen=True)
class Identity:
    """The authenticated caller resolved from a token."""
    user_id: str
    email: str
    role: UserRole


def parse_duration(value: str) -> timedelta:
    """
    Parse an expiry window: "3600", "90s", "15m", "24h", "7d".
    """
    match = re.fullmatch(r"\s*(\d+)\s*([smhd]?)\s*", value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount = int(match.group(1))
    unit = match.group(2) or "s"
    return timedelta(seconds=amount * _DURATION_UNITS[unit])


def has_role(role: UserRole, allowed: Iterable[UserRole]) -> bool:
    return role in frozenset(allowed)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        logger.warning("Stored password hash is malformed")
        return False


class TokenService:
    """
    Issues and verifies signed, time-limited tokens.

    Usage:
        tokens = TokenService(secret, timedelta(hours=24))
        token = tokens.issue(user.id, user.email, user.role)
        identity = tokens.verify(token)
    """

    def __init__(self, secret: Optional[str], expires_in: timedelta = timedelta(hours=24)):
        if not secret:
            logger.warning("JWT_SECRET is not set; using the insecure fallback secret")
            secret = FALLBACK_SECRET
        self._secret = secret
        self.expires_in = expires_in

    def issue(self, user_id: str, email: str, role: UserRole) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": user_id,
            "email": email,
            "role": UserRole(role).value,
            "iat": now,
            "exp": now + self.expires_in,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> Identity:
        """Raises AuthError for bad signature, malformed token, expiry or bad payload."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.info("Token verification failed: %s", e)
            raise AuthError("Invalid token") from e

        try:
            return Identity(
                user_id=str(payload["userId"]),
                email=str(payload["email"]),
                role=UserRole(payload["role"]),
            )
        except (KeyError, ValueError) as e:
            logger.info("Token payload rejected: %s", e)
            raise AuthError("Invalid token") from e
