"""
auth/tokens.py -- JWT access and refresh token utilities.

Security design decisions:
  Two secrets: access tokens are signed with SECRET_KEY, refresh tokens with
       the distinct REFRESH_SECRET_KEY. A "type" claim is checked as well, so
       a refresh token can never pass as an access token even if an operator
       misconfigures both secrets to the same value.

  jti claim: every token carries a random id. Two tokens minted for the same
       user within the same second would otherwise be byte-identical, and
       rotation relies on the new refresh token differing from the old one.

  Verification returns None on any failure (bad signature, expired,
       malformed, wrong type, missing subject). Callers never learn which
       check failed -- the route layer turns None into a uniform 401.

Layer rule: no imports from api/ or client/. Import from core/ is allowed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# Exposed for SessionMiddleware (Authlib OAuth state cookie signing).
_SECRET_KEY = _settings.secret_key


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def _encode(user: User, token_type: str, secret: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "email": user.email,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def create_access_token(user: User, expires_delta: timedelta | None = None) -> str:
    """Encode a short-lived access token for user.

    Args:
        user:          The user the token identifies (id and email are used).
        expires_delta: Override for the configured ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=_settings.access_token_expire_minutes)
    return _encode(user, _ACCESS, _settings.secret_key, lifetime)


def create_refresh_token(user: User, expires_delta: timedelta | None = None) -> str:
    """Encode a long-lived refresh token for user, signed with the refresh secret."""
    lifetime = expires_delta if expires_delta is not None else timedelta(days=_settings.refresh_token_expire_days)
    return _encode(user, _REFRESH, _settings.refresh_secret_key, lifetime)


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def _decode(token: str, secret: str, token_type: str) -> dict | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != token_type or not payload.get("sub"):
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the payload dict or None on any failure."""
    return _decode(token, _settings.secret_key, _ACCESS)


def decode_refresh_token(token: str) -> dict | None:
    """Decode and verify a refresh token. Returns the payload dict or None on any failure."""
    return _decode(token, _settings.refresh_secret_key, _REFRESH)
