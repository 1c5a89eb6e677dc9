"""Per-backend credentials with an expiry-aware OAuth2 token cache."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx
from pydantic import ValidationError

from capdomain.errors import AuthError
from capdomain.schemas import AuthType, BackendConfig, OAuth2TokenResponse

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TIMEOUT = 30.0  # seconds
DEFAULT_TOKEN_LIFETIME = 3600  # seconds, when the server omits expires_in
DEFAULT_EXPIRING_BUFFER = 300  # seconds


@dataclass(frozen=True)
class TokenCacheEntry:
    """Cached access token and its absolute expiry (epoch seconds)."""

    token: str
    expires_at: float


class CredentialManager:
    """Issues authorization headers for remote backends.

    OAuth2 tokens obtained through a refresh-token grant are cached in memory,
    keyed by backend id. Concurrent refreshes for the same backend are
    collapsed into one token request.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TOKEN_TIMEOUT,
        expiry_skew_seconds: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the manager.

        Args:
            client: HTTP client for token requests (one is created when omitted)
            timeout: Timeout for token requests in seconds
            expiry_skew_seconds: Treat cached tokens as expired this long before
                their real expiry
            clock: Source of the current time in epoch seconds
        """
        self._client = client or httpx.Client(timeout=timeout)
        self.expiry_skew_seconds = expiry_skew_seconds
        self._clock = clock
        self._token_cache: dict[str, TokenCacheEntry] = {}
        self._rotated_refresh_tokens: dict[str, str] = {}
        self._cache_lock = threading.Lock()
        self._refresh_locks: dict[str, threading.Lock] = {}
        self._refresh_locks_lock = threading.Lock()

    def headers_for(self, config: BackendConfig) -> dict[str, str]:
        """Build the authorization headers for a backend.

        Args:
            config: Backend config unit

        Returns:
            Mapping of header name to value; empty when the backend has no auth

        Raises:
            AuthError: If no usable credential is available
        """
        auth = config.auth
        if auth is None:
            logger.debug(f"No auth configured for {config.id}")
            return {}

        if auth.type == AuthType.APP_TOKEN:
            if not auth.app_token:
                raise AuthError(
                    f"App token is required for app-token authentication ({config.id})",
                    backend_id=config.id,
                )
            logger.debug(f"Using app-token for {config.id}")
            return {"Authorization": f"Bearer {auth.app_token}"}

        token = self._oauth2_token(config)
        logger.debug(f"Using OAuth2 token for {config.id}")
        return {"Authorization": f"Bearer {token}"}

    def _cached_token(self, backend_id: str) -> str | None:
        with self._cache_lock:
            entry = self._token_cache.get(backend_id)
        if entry and entry.expires_at - self.expiry_skew_seconds > self._clock():
            return entry.token
        return None

    def _refresh_lock(self, backend_id: str) -> threading.Lock:
        with self._refresh_locks_lock:
            return self._refresh_locks.setdefault(backend_id, threading.Lock())

    def _oauth2_token(self, config: BackendConfig) -> str:
        oauth2 = config.auth.oauth2 if config.auth else None
        if oauth2 is None:
            raise AuthError(f"OAuth2 configuration is required for {config.id}", backend_id=config.id)

        token = self._cached_token(config.id)
        if token:
            logger.debug(f"Using cached OAuth2 token for {config.id}")
            return token

        # Single flight: whoever waited on the lock re-reads the cache first.
        with self._refresh_lock(config.id):
            token = self._cached_token(config.id)
            if token:
                logger.debug(f"Using OAuth2 token refreshed concurrently for {config.id}")
                return token

            if self._refresh_token_for(config):
                try:
                    return self._refresh_oauth2_token(config)
                except (AuthError, httpx.HTTPError, httpx.InvalidURL) as e:
                    logger.warning(f"Failed to refresh OAuth2 token for {config.id}: {e}")

        if oauth2.access_token and oauth2.expires_at and oauth2.expires_at / 1000 > self._clock():
            logger.debug(f"Using pre-seeded OAuth2 access token for {config.id}")
            return oauth2.access_token

        raise AuthError(f"No valid OAuth2 token available for {config.id}", backend_id=config.id)

    def _refresh_token_for(self, config: BackendConfig) -> str | None:
        with self._cache_lock:
            rotated = self._rotated_refresh_tokens.get(config.id)
        return rotated or config.auth.oauth2.refresh_token

    def _refresh_oauth2_token(self, config: BackendConfig) -> str:
        """Run a refresh-token grant and cache the new access token."""
        oauth2 = config.auth.oauth2
        logger.info(f"Refreshing OAuth2 token for {config.id}")

        response = self._client.post(
            oauth2.token_url,
            json={
                "grant_type": "refresh_token",
                "refresh_token": self._refresh_token_for(config),
                "client_id": oauth2.client_id,
                "client_secret": oauth2.client_secret,
            },
        )
        if not response.is_success:
            raise AuthError(
                f"Failed to refresh OAuth2 token: {response.status_code} {response.text}",
                backend_id=config.id,
            )

        try:
            token_response = OAuth2TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthError(f"Malformed token response for {config.id}: {e}", backend_id=config.id) from e

        lifetime = token_response.expires_in
        if lifetime is None:
            logger.debug(f"Token response for {config.id} has no expires_in, assuming {DEFAULT_TOKEN_LIFETIME}s")
            lifetime = DEFAULT_TOKEN_LIFETIME
        expires_at = self._clock() + lifetime

        with self._cache_lock:
            self._token_cache[config.id] = TokenCacheEntry(
                token=token_response.access_token,
                expires_at=expires_at,
            )
            if token_response.refresh_token:
                self._rotated_refresh_tokens[config.id] = token_response.refresh_token

        logger.info(
            f"Successfully refreshed OAuth2 token for {config.id}, "
            f"expires at {datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()}"
        )
        return token_response.access_token

    def clear_token_cache(self, backend_id: str | None = None) -> None:
        """Evict one backend's cached token, or every cached token."""
        with self._cache_lock:
            if backend_id:
                self._token_cache.pop(backend_id, None)
                logger.info(f"Cleared token cache for {backend_id}")
            else:
                self._token_cache.clear()
                logger.info("Cleared all token cache")

    def is_token_expiring_soon(
        self,
        backend_id: str,
        buffer_seconds: float = DEFAULT_EXPIRING_BUFFER,
    ) -> bool:
        """Check whether a cached token expires within buffer_seconds.

        Returns True when no token is cached for the backend.
        """
        with self._cache_lock:
            entry = self._token_cache.get(backend_id)
        if entry is None:
            return True
        return entry.expires_at - self._clock() < buffer_seconds

    def cached_entry(self, backend_id: str) -> TokenCacheEntry | None:
        """Return the cached token entry for a backend, if any."""
        with self._cache_lock:
            return self._token_cache.get(backend_id)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
