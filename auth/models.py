"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the session functions, and the routes do the work.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    ADMIN = "ADMIN"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"
    PAST_DUE = "PAST_DUE"


@dataclass
class User:
    """Represents a persisted TierGate account.

    external_id is provider-qualified ("google:<sub>", "github:<id>") so one
    UNIQUE column covers every OAuth provider. It stays None for accounts
    created by other paths (CLI, seed data) until the first OAuth login links
    them by email.

    refresh_token holds the single currently valid refresh token. Issuing a
    new one overwrites it; logout, ban, and housekeeping clear it.
    """

    email: str
    display_name: str
    id: str | None = None
    external_id: str | None = None
    avatar_url: str | None = None
    status_message: str | None = None
    role: Role = Role.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    is_banned: bool = False
    refresh_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class OAuthIdentity:
    """Normalized assertion from an external identity provider.

    email and external_id are required; avatar_url may be None.
    """

    email: str
    display_name: str
    external_id: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """Public-safe projection of a User. Never carries the refresh token."""

    id: str
    email: str
    display_name: str
    avatar_url: str | None
    role: Role


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class IssuedTokens:
    """Result of a login: a fresh token pair plus the caller's public projection."""

    access_token: str
    refresh_token: str
    user: PublicUser
