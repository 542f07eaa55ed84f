"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Security notes:
  [H1] Email verification is mandatory. get_oauth_identity() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       email could belong to an attacker who added a victim's address without
       confirming it, and the OAuth bridge links accounts by email.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  github -- Authorization code flow; static endpoints.

External ids are qualified with the provider name ("google:<sub>",
"github:<id>") so numeric GitHub ids can never collide with Google subjects
in the single external_id column.

Layer rule: no imports from api/ or client/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthIdentity
from core.config import get_settings

logger = logging.getLogger("tiergate.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


def is_enabled(provider: str) -> bool:
    return provider in {p["name"] for p in get_enabled_providers()}


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_identity(client, provider: str, token: dict) -> OAuthIdentity:
    """Normalize a provider token response into an OAuthIdentity.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "google" or "github".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If a verified email or a stable subject cannot be confirmed.
    """
    if provider == "google":
        return _get_google_identity(token)
    elif provider == "github":
        return await _get_github_identity(client, token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _get_google_identity(token: dict) -> OAuthIdentity:
    """Extract the identity from Google's id_token claims.

    [H1] The email claim is only accepted when email_verified is True. A
    missing email_verified claim is treated as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError("google OAuth: email is not verified")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return OAuthIdentity(
        email=email,
        display_name=userinfo.get("name") or email.split("@")[0],
        external_id=f"google:{subject}",
        avatar_url=userinfo.get("picture"),
    )


async def _get_github_identity(client, token: dict) -> OAuthIdentity:
    """Extract the identity from the GitHub API.

    GitHub does not include the email in the access token. Two API calls are
    required:
      1. GET /user -- numeric id (stable subject), name, avatar.
      2. GET /user/emails -- the primary verified email [H1].
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError("github OAuth: no primary verified email found")

    return OAuthIdentity(
        email=email,
        display_name=profile.get("name") or profile.get("login") or email.split("@")[0],
        external_id=f"github:{profile['id']}",
        avatar_url=profile.get("avatar_url"),
    )
