"""
api/routes/v1/auth.py -- OAuth login, token refresh, profile, and logout endpoints.

Routes:
  GET  /auth/providers              -- list enabled OAuth providers (public)
  GET  /auth/profile                -- public projection of the caller (requires auth)
  POST /auth/refresh                -- rotate a refresh token into a new pair
  POST /auth/logout                 -- revoke the caller's refresh token (requires auth)
  GET  /auth/{provider}             -- redirect to the identity provider
  GET  /auth/{provider}/callback    -- provider callback; redirects to the frontend with tokens

Security:
  [H2] POST /refresh is rate-limited per IP (REFRESH_RATE_LIMIT).
  [R1] Every refresh failure is the same 401 "unauthorized" envelope.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Provider names are validated against the enabled list before any redirect,
  and failure redirects always target the configured FRONTEND_URL.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import MessageResponse, OAuthProviderInfo, RefreshRequest, TokenPairResponse, UserPublic
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers, get_oauth_identity, is_enabled
from auth.sessions import issue_tokens, logout as revoke_refresh_token, resolve_oauth_user, rotate_refresh_token
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("tiergate.api.auth")

_settings = get_settings()

# Auth policy:
# - GET  /auth/providers:           public -- the login page renders provider buttons from it
# - GET  /auth/{provider}:          public -- starts the OAuth flow
# - GET  /auth/{provider}/callback: public -- authlib verifies the session-bound state
# - POST /auth/refresh:             public -- the refresh token in the body is the credential
# - GET  /auth/profile:             requires auth (get_current_user)
# - POST /auth/logout:              requires auth (get_current_user)
#
# Registration order: the literal /auth/providers, /auth/profile, /auth/refresh
# and /auth/logout paths come before /auth/{provider} so they are never
# captured as a provider name.
router = APIRouter()


def _frontend_redirect(path: str, params: dict) -> RedirectResponse:
    resp = RedirectResponse(f"{_settings.frontend_url.rstrip('/')}{path}?{urlencode(params)}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _oauth_failed() -> RedirectResponse:
    return _frontend_redirect("/login", {"error": "oauth_failed"})


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty list if none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@limiter.limit(_settings.refresh_rate_limit)  # [H2]
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a brand-new access/refresh pair.

    The presented token is invalidated on success. Presenting it again, or
    presenting any superseded, expired, forged, or revoked token, or a token
    belonging to a banned user, yields the same 401 [R1].
    """
    user_store: UserStore = request.app.state.user_store
    pair = rotate_refresh_token(user_store, body.refresh_token)
    if pair is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid refresh token."},
            headers={"WWW-Authenticate": "Bearer", "Cache-Control": "no-store"},
        )
    resp = JSONResponse(
        content=TokenPairResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        ).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=UserPublic)
def profile(current_user: User = Depends(get_current_user)) -> UserPublic:
    """Return the public projection of the authenticated caller."""
    return UserPublic.from_domain(current_user)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Revoke the caller's refresh token. The access token expires on its own."""
    user_store: UserStore = request.app.state.user_store
    revoke_refresh_token(user_store, current_user.id)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    Validates the provider name against the enabled provider list first so a
    spoofed name can never produce a redirect.
    """
    if not is_enabled(provider):
        return _oauth_failed()

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback, sign the user in, and hand tokens to the frontend.

    Flow:
      1. Exchange the authorization code (authlib checks the state parameter).
      2. Normalize the provider response into an OAuthIdentity [H1].
      3. Resolve to one local user (external id, else email link, else create).
      4. Refuse banned accounts before any token is issued.
      5. Issue tokens and redirect to FRONTEND_URL/auth/callback with
         accessToken, refreshToken and the JSON-encoded public user.
    """
    if not is_enabled(provider):
        return _oauth_failed()

    client = request.app.state.oauth.create_client(provider)
    user_store: UserStore = request.app.state.user_store

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _oauth_failed()

    try:
        identity = await get_oauth_identity(client, provider, token)
    except ValueError:
        logger.warning("OAuth login rejected: unverified or missing identity from %r", provider)
        return _oauth_failed()
    except httpx.HTTPError:
        logger.exception("OAuth profile lookup failed for provider %r", provider)
        return _oauth_failed()

    user = resolve_oauth_user(user_store, identity)
    if user.is_banned:
        logger.warning("OAuth login refused for banned user %s", user.id)
        return _frontend_redirect("/login", {"error": "account_banned"})

    issued = issue_tokens(user_store, user)
    logger.info("User %s signed in via %s", user.id, provider)

    return _frontend_redirect(
        "/auth/callback",
        {
            "accessToken": issued.access_token,
            "refreshToken": issued.refresh_token,
            "user": UserPublic.from_domain(issued.user).model_dump_json(by_alias=True),
        },
    )
