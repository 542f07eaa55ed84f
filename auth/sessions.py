"""
auth/sessions.py -- Login, refresh rotation, logout, and token housekeeping.

These functions are the auth core. Each takes the UserStore explicitly so the
route layer, the background task, the CLI, and the tests all drive the same
code paths.

Flows:
  resolve_oauth_user()  -- external identity -> exactly one local User
                           (external-id match, else email link, else create).
  issue_tokens()        -- mint an access/refresh pair, persist the refresh
                           token as the user's single active one.
  rotate_refresh_token() -- verify a presented refresh token and replace it
                           with a brand-new pair. Returns None on any failure.
  logout()              -- clear the stored refresh token.
  purge_expired_refresh_tokens() -- housekeeping; clears stored tokens that
                           no longer verify.

Security:
  [R1] Every rotate_refresh_token() rejection returns None and is logged with
       its internal reason only. Store errors raised while verifying are folded
       into the same None so the response shape never reveals internal state.
  [R2] The stored-token comparison uses hmac.compare_digest.
  [R3] The final write is a compare-and-swap (UserStore.swap_refresh_token).
       Of two requests racing with the same valid token, exactly one rotates.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import hmac
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import IssuedTokens, OAuthIdentity, PublicUser, Role, TokenPair, User
from auth.store import UserStore
from auth.tokens import create_access_token, create_refresh_token, decode_refresh_token

logger = logging.getLogger("tiergate.auth")


def to_public(user: User) -> PublicUser:
    """Project a User onto the fields that are safe to hand to clients."""
    return PublicUser(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        role=user.role,
    )


# ---------------------------------------------------------------------------
# OAuth bridge
# ---------------------------------------------------------------------------


def _find_or_link(store: UserStore, identity: OAuthIdentity) -> User | None:
    user = store.get_by_external_id(identity.external_id)
    if user is not None:
        return user

    user = store.get_by_email(identity.email)
    if user is None:
        return None

    store.link_external_identity(user.id, identity.external_id, identity.display_name, identity.avatar_url)
    logger.info("Linked external identity to existing user %s", user.id)
    return store.get_by_id(user.id)


def resolve_oauth_user(store: UserStore, identity: OAuthIdentity) -> User:
    """Resolve an external identity assertion to exactly one local user.

    1. External id match: return the user unchanged (no write).
    2. Email match: link the external id and copy display name / avatar.
    3. Neither: create a FREE user from the assertion.

    If creation loses a uniqueness race to a concurrent callback for the same
    identity, the lookups run once more and return the winner's record.
    """
    if not identity.email or not identity.external_id:
        raise ValueError("OAuth identity requires both email and external_id")

    user = _find_or_link(store, identity)
    if user is not None:
        return user

    try:
        user_id = store.create_user(
            User(
                email=identity.email,
                display_name=identity.display_name,
                external_id=identity.external_id,
                avatar_url=identity.avatar_url,
                role=Role.FREE,
            )
        )
    except IntegrityError:
        logger.info("Concurrent OAuth signup for %s detected; re-reading", identity.external_id)
        user = _find_or_link(store, identity)
        if user is None:
            raise
        return user

    logger.info("Created user %s via OAuth", user_id)
    created = store.get_by_id(user_id)
    if created is None:
        raise RuntimeError(f"User {user_id} missing after insert")
    return created


# ---------------------------------------------------------------------------
# Token issue / rotation / revocation
# ---------------------------------------------------------------------------


def issue_tokens(store: UserStore, user: User) -> IssuedTokens:
    """Mint a fresh token pair for user and persist the refresh token.

    Any refresh token issued earlier for this user stops working because it
    no longer matches the stored value.
    """
    access_token = create_access_token(user)
    refresh_token = create_refresh_token(user)
    store.set_refresh_token(user.id, refresh_token)
    return IssuedTokens(access_token=access_token, refresh_token=refresh_token, user=to_public(user))


def _reject(reason: str, user_id: str | None = None) -> None:
    logger.warning("Refresh rejected: %s (user=%s)", reason, user_id or "-")


def rotate_refresh_token(store: UserStore, presented: str) -> TokenPair | None:
    """Exchange a valid refresh token for a brand-new access/refresh pair.

    Gates, in order: signature/expiry, user exists, presented token equals the
    stored one, user not banned, compare-and-swap write. Returns None on any
    failure [R1].
    """
    payload = decode_refresh_token(presented)
    if payload is None:
        _reject("invalid or expired token")
        return None

    user_id = payload["sub"]
    try:
        user = store.get_by_id(user_id)
        if user is None:
            _reject("unknown subject", user_id)
            return None

        stored = user.refresh_token or ""
        if not stored or not hmac.compare_digest(stored.encode(), presented.encode()):  # [R2]
            _reject("token does not match stored token", user_id)
            return None

        if user.is_banned:
            _reject("user is banned", user_id)
            return None

        access_token = create_access_token(user)
        refresh_token = create_refresh_token(user)
        if not store.swap_refresh_token(user.id, presented, refresh_token):  # [R3]
            _reject("token rotated concurrently", user_id)
            return None
    except SQLAlchemyError:
        logger.exception("Store error during refresh (user=%s)", user_id)
        return None

    return TokenPair(access_token=access_token, refresh_token=refresh_token)


def logout(store: UserStore, user_id: str) -> None:
    """Revoke the user's refresh token. Outstanding access tokens expire on their own."""
    store.set_refresh_token(user_id, None)
    logger.info("User %s logged out", user_id)


def assign_role(store: UserStore, user_id: str, role: Role) -> User | None:
    """Set a user's role. Returns the updated user, or None if user_id is unknown."""
    if not store.set_role(user_id, role):
        return None
    logger.info("Role of user %s set to %s", user_id, Role(role).value)
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------


def purge_expired_refresh_tokens(store: UserStore) -> tuple[int, int]:
    """Clear stored refresh tokens that no longer verify.

    Not required for correctness -- rotate_refresh_token() re-verifies expiry
    on every use -- but keeps dead credentials out of the table.

    Returns (removed, total) where total is the number of users that held a
    token when the scan started.
    """
    holders = store.list_users_with_refresh_tokens()
    removed = 0
    for user in holders:
        if decode_refresh_token(user.refresh_token) is not None:
            continue
        if store.clear_refresh_token_if(user.id, user.refresh_token):
            removed += 1
            logger.debug("Removed expired refresh token for user %s", user.id)
    logger.info("Token cleanup completed: removed %d of %d stored refresh tokens", removed, len(holders))
    return removed, len(holders)
