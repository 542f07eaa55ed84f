"""
client/api_client.py -- Python client for the TierGate API with refresh coalescing.

The client attaches the bearer access token to every call. When a call comes
back 401 it rotates the refresh token once and retries once.

Refresh coalescing:
  Rotation invalidates the presented refresh token, so two threads rotating
  the same token would race and one would be logged out. refresh() therefore
  runs under a per-client lock, and a caller passes in the access token its
  failed request used. If another thread already replaced that token while
  this one waited for the lock, the caller reuses the new token instead of
  rotating again. Concurrent callers share one in-flight rotation.

Layer rule: imports nothing from api/, auth/, or core/. The server and the
client only share the HTTP contract.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import requests

logger = logging.getLogger("tiergate.client")

_DEFAULT_TIMEOUT = 10


class SessionExpired(Exception):
    """The refresh token was rejected; the user has to sign in again."""


class TierGateClient:
    """Thread-safe API client holding one user's token pair.

    Args:
        base_url:      Server root, e.g. "http://localhost:8000".
        access_token:  Access token from the OAuth callback (may be None).
        refresh_token: Refresh token from the OAuth callback.
        session:       Anything with a requests-style request(method, url, ...)
                       method. Defaults to a new requests.Session.
        timeout:       Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        session: Any = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._lock = threading.Lock()
        self.rotations = 0

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, token: Optional[str], **kwargs):
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return self._session.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            timeout=kwargs.pop("timeout", self.timeout),
            **kwargs,
        )

    def request(self, method: str, path: str, **kwargs):
        """Send an authenticated request, refreshing and retrying once on 401.

        Raises SessionExpired if the refresh token is no longer accepted.
        """
        token = self._access_token
        resp = self._send(method, path, token, **dict(kwargs))
        if resp.status_code != 401:
            return resp
        new_token = self.refresh(stale_access_token=token or "")
        return self._send(method, path, new_token, **dict(kwargs))

    def get(self, path: str, **kwargs):
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs):
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs):
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs):
        return self.request("PATCH", path, **kwargs)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def refresh(self, stale_access_token: Optional[str] = None) -> str:
        """Rotate the token pair and return the new access token.

        When stale_access_token is given and the held access token has already
        moved on, another caller finished a rotation while this one waited, so
        the held token is returned without calling the server.
        """
        with self._lock:
            current = self._access_token
            if stale_access_token is not None and current and current != stale_access_token:
                return current

            if not self._refresh_token:
                raise SessionExpired("No refresh token available")

            resp = self._session.request(
                "POST",
                f"{self.base_url}/auth/refresh",
                json={"refreshToken": self._refresh_token},
                timeout=self.timeout,
            )
            if resp.status_code != 200:
                logger.info("Refresh rejected with HTTP %d; dropping session", resp.status_code)
                self._access_token = None
                self._refresh_token = None
                raise SessionExpired("Refresh token was rejected")

            data = resp.json()
            self._access_token = data["accessToken"]
            self._refresh_token = data["refreshToken"]
            self.rotations += 1
            return self._access_token

    def logout(self) -> None:
        """Revoke the refresh token on the server and forget both tokens locally."""
        try:
            if self._access_token:
                self._send("POST", "/auth/logout", self._access_token)
        finally:
            with self._lock:
                self._access_token = None
                self._refresh_token = None
