"""
tests/test_oauth_callback.py -- Integration tests for the OAuth redirect chain.

The provider side is replaced by the module-scoped oauth_registry mock, so
these tests run the real routes, the real bridge, and the real token issue
against a stubbed authlib client. Assertions are made on the Location header
directly (follow_redirects=False).

Coverage:
  - GET /auth/providers lists only configured providers
  - GET /auth/google delegates to authlib's authorize_redirect
  - Successful callback -> FRONTEND_URL/auth/callback with both tokens + user JSON
  - Second login with the same identity resolves to the same account
  - Unverified email, failed code exchange, provider API error, unknown or
    disabled provider -> FRONTEND_URL/login?error=oauth_failed
  - Banned accounts -> FRONTEND_URL/login?error=account_banned, no token stored
  - get_oauth_identity() normalization for Google and GitHub
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from authlib.integrations.starlette_client import OAuthError
from fastapi.responses import RedirectResponse

from auth.oauth import get_oauth_identity
from auth.tokens import decode_access_token, decode_refresh_token

_FRONTEND = "http://frontend.test"


def _google_token(**claims) -> dict:
    userinfo = {
        "sub": "g-123",
        "email": "oauth.user@example.com",
        "email_verified": True,
        "name": "OAuth User",
        "picture": "https://img.example.com/g.png",
    }
    userinfo.update(claims)
    return {"access_token": "provider-token", "userinfo": userinfo}


def _stub_client(oauth_registry: MagicMock, token: dict | None = None, exc: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.authorize_access_token = AsyncMock(return_value=token, side_effect=exc)
    oauth_registry.create_client.return_value = client
    return client


def _query(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


def _assert_oauth_failed(resp) -> None:
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{_FRONTEND}/login?error=oauth_failed"


class TestProviderList:
    def test_lists_google_only(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == [{"name": "google", "label": "Google"}]

    def test_login_redirect_delegates_to_authlib(self, api_client, oauth_registry) -> None:
        client, _ = api_client
        provider = MagicMock()
        provider.authorize_redirect = AsyncMock(
            return_value=RedirectResponse("https://accounts.google.com/o/oauth2/auth?state=x", status_code=302)
        )
        oauth_registry.create_client.return_value = provider

        resp = client.get("/auth/google")

        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://accounts.google.com/")
        _request, redirect_uri = provider.authorize_redirect.call_args.args
        assert redirect_uri.endswith("/auth/google/callback")

    def test_login_redirect_unknown_provider(self, api_client) -> None:
        client, _ = api_client
        _assert_oauth_failed(client.get("/auth/myspace"))


class TestCallback:
    def test_success_redirects_with_tokens_and_user(self, api_client, oauth_registry) -> None:
        client, user_store = api_client
        _stub_client(oauth_registry, token=_google_token())

        resp = client.get("/auth/google/callback?code=abc&state=xyz")

        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith(f"{_FRONTEND}/auth/callback?")
        assert resp.headers["cache-control"] == "no-store"

        params = _query(location)
        user = json.loads(params["user"])
        assert user["email"] == "oauth.user@example.com"
        assert user["displayName"] == "OAuth User"
        assert user["avatarUrl"] == "https://img.example.com/g.png"
        assert user["role"] == "FREE"

        assert decode_access_token(params["accessToken"])["sub"] == user["id"]
        assert decode_refresh_token(params["refreshToken"])["sub"] == user["id"]

        stored = user_store.get_by_id(user["id"])
        assert stored.external_id == "google:g-123"
        assert stored.refresh_token == params["refreshToken"]

    def test_repeat_login_reuses_account(self, api_client, oauth_registry) -> None:
        client, user_store = api_client
        token = _google_token(sub="g-repeat", email="repeat@example.com")
        _stub_client(oauth_registry, token=token)
        first = json.loads(_query(client.get("/auth/google/callback").headers["location"])["user"])
        _stub_client(oauth_registry, token=token)
        second = json.loads(_query(client.get("/auth/google/callback").headers["location"])["user"])
        assert first["id"] == second["id"]
        assert user_store.get_by_email("repeat@example.com").id == first["id"]

    def test_email_match_links_existing_account(self, api_client, oauth_registry, api_user) -> None:
        client, user_store = api_client
        existing = api_user(email="linked@example.com")
        _stub_client(oauth_registry, token=_google_token(sub="g-link", email="linked@example.com"))

        user = json.loads(_query(client.get("/auth/google/callback").headers["location"])["user"])

        assert user["id"] == existing.id
        assert user_store.get_by_id(existing.id).external_id == "google:g-link"

    def test_unverified_email_rejected(self, api_client, oauth_registry) -> None:
        client, user_store = api_client
        _stub_client(oauth_registry, token=_google_token(sub="g-unverified", email="unverified@example.com", email_verified=False))
        _assert_oauth_failed(client.get("/auth/google/callback"))
        assert user_store.get_by_email("unverified@example.com") is None

    def test_code_exchange_failure(self, api_client, oauth_registry) -> None:
        client, _ = api_client
        _stub_client(oauth_registry, exc=OAuthError(error="access_denied"))
        _assert_oauth_failed(client.get("/auth/google/callback?error=access_denied"))

    def test_banned_user_refused_without_tokens(self, api_client, oauth_registry, api_user) -> None:
        client, user_store = api_client
        banned = api_user(email="banned@example.com", external_id="google:g-banned", is_banned=True)
        _stub_client(oauth_registry, token=_google_token(sub="g-banned", email="banned@example.com"))

        resp = client.get("/auth/google/callback")

        assert resp.status_code == 302
        assert resp.headers["location"] == f"{_FRONTEND}/login?error=account_banned"
        assert "accessToken" not in resp.headers["location"]
        assert user_store.get_by_id(banned.id).refresh_token is None

    def test_provider_api_error(self, api_client, oauth_registry) -> None:
        client, _ = api_client
        _stub_client(oauth_registry, token=_google_token())
        failure = httpx.HTTPStatusError(
            "502 Bad Gateway",
            request=httpx.Request("GET", "https://api.github.com/user"),
            response=httpx.Response(502),
        )
        with patch("api.routes.v1.auth.get_oauth_identity", AsyncMock(side_effect=failure)):
            _assert_oauth_failed(client.get("/auth/google/callback"))

    @pytest.mark.parametrize("provider", ["github", "myspace"])
    def test_disabled_or_unknown_provider(self, api_client, oauth_registry, provider) -> None:
        client, _ = api_client
        stub = _stub_client(oauth_registry, token=_google_token())
        _assert_oauth_failed(client.get(f"/auth/{provider}/callback"))
        stub.authorize_access_token.assert_not_called()


# ---------------------------------------------------------------------------
# Identity normalization
# ---------------------------------------------------------------------------


def _json_response(payload) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


class TestIdentityNormalization:
    def test_google_name_falls_back_to_email_local_part(self) -> None:
        identity = asyncio.run(get_oauth_identity(None, "google", _google_token(name=None, picture=None)))
        assert identity.display_name == "oauth.user"
        assert identity.avatar_url is None
        assert identity.external_id == "google:g-123"

    def test_google_missing_email_verified_claim_is_unverified(self) -> None:
        token = _google_token()
        del token["userinfo"]["email_verified"]
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_identity(None, "google", token))

    def test_github_uses_primary_verified_email(self) -> None:
        gh = MagicMock()
        gh.get = AsyncMock(
            side_effect=[
                _json_response({"id": 42, "login": "octo", "name": None, "avatar_url": "https://gh.example.com/a"}),
                _json_response(
                    [
                        {"email": "old@example.com", "primary": False, "verified": True},
                        {"email": "octo@example.com", "primary": True, "verified": True},
                    ]
                ),
            ]
        )
        identity = asyncio.run(get_oauth_identity(gh, "github", {"access_token": "t"}))
        assert identity.email == "octo@example.com"
        assert identity.display_name == "octo"
        assert identity.external_id == "github:42"
        assert identity.avatar_url == "https://gh.example.com/a"

    def test_github_without_verified_primary_rejected(self) -> None:
        gh = MagicMock()
        gh.get = AsyncMock(
            side_effect=[
                _json_response({"id": 7, "login": "x"}),
                _json_response([{"email": "x@example.com", "primary": True, "verified": False}]),
            ]
        )
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_identity(gh, "github", {"access_token": "t"}))

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_identity(None, "myspace", {}))
