"""
JWKS client for Keycloak integration.
"""

import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
from jwt import PyJWK
from jwt.exceptions import InvalidKeyError, PyJWKError

from shared.errors import ConfigurationError, JWKSUnavailableError, KeyResolutionError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .rate_limiter import SlidingWindowRateLimiter


@dataclass
class CachedKey:
    """A usable signing key and the time it stops being trusted."""

    key: PyJWK
    expires_at: float


class JWKSKeyResolver:
    """Resolves token signing keys from a remote JWKS endpoint.

    Keys are cached by ``kid`` for ``cache_ttl`` seconds. A miss triggers a
    refetch of the whole key set so rotated keys are picked up, but never more
    than ``requests_per_minute`` times per minute.
    """

    def __init__(
        self,
        jwks_url: Optional[str],
        cache_ttl: float = 86400,
        requests_per_minute: int = 10,
        timeout: float = 30.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.logger = get_logger("users.jwks")
        self.metrics = metrics

        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None
        self._key_cache: Dict[str, CachedKey] = {}
        self._rate_limiter = SlidingWindowRateLimiter(requests_per_minute, 60.0, clock=clock)

    def _get_client(self) -> httpx.AsyncClient:
        """Create the HTTP client on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_signing_key(self, kid: str) -> PyJWK:
        """Return the public key for ``kid``, fetching the JWKS if needed."""
        cached = self._key_cache.get(kid)
        if cached is not None and cached.expires_at > self._clock():
            return cached.key

        jwks = await self._fetch_jwks()

        cached = self._key_cache.get(kid)
        if cached is not None:
            return cached.key

        # Present in the set but not cached: say why it is unusable
        for key_data in jwks["keys"]:
            if isinstance(key_data, dict) and key_data.get("kid") == kid:
                if not self._is_signing_key(key_data):
                    raise KeyResolutionError(
                        "Key is not a signing key",
                        details={"kid": kid},
                    )
                self.logger.warning("Unusable key in JWKS", kid=kid)
                raise KeyResolutionError(
                    "Signing key cannot be used",
                    details={"kid": kid},
                )

        self.logger.warning("Key not found", kid=kid)
        raise KeyResolutionError("Signing key not found", details={"kid": kid})

    async def _fetch_jwks(self) -> Dict[str, Any]:
        """Fetch the key set and refresh the cache with every usable key."""
        if not self.jwks_url:
            raise ConfigurationError(
                "Server configuration error: KEYCLOAK_URL and KEYCLOAK_REALM must be set"
            )

        if not self._rate_limiter.try_acquire():
            retry_after = round(self._rate_limiter.retry_after(), 1)
            self.logger.warning("JWKS request rate limit reached", retry_after=retry_after)
            self._record_refresh("rate_limited")
            raise KeyResolutionError(
                "JWKS request rate limit exceeded",
                details={"retry_after_seconds": retry_after},
            )

        try:
            with self._time_refresh():
                response = await self._get_client().get(self.jwks_url)
                response.raise_for_status()
                jwks = response.json()
        except httpx.HTTPStatusError as e:
            self.logger.error("Failed to fetch JWKS", status_code=e.response.status_code)
            self._record_refresh("error")
            raise JWKSUnavailableError(
                details={"status_code": e.response.status_code}
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Failed to fetch JWKS", error=str(e))
            self._record_refresh("error")
            raise JWKSUnavailableError(details={"error": str(e)}) from e

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            self._record_refresh("error")
            raise JWKSUnavailableError("JWKS response missing 'keys' array")

        self._refresh_cache(jwks["keys"])
        self._record_refresh("ok")
        self.logger.info("JWKS refreshed successfully", keys_count=len(self._key_cache))
        return jwks

    def _refresh_cache(self, keys: list) -> None:
        """Replace the cache; keys dropped from the set stop being trusted."""
        expires_at = self._clock() + self.cache_ttl
        cache: Dict[str, CachedKey] = {}
        for key_data in keys:
            if not isinstance(key_data, dict) or not self._is_signing_key(key_data):
                continue
            try:
                key = PyJWK(key_data)
            except (PyJWKError, InvalidKeyError, KeyError, ValueError) as e:
                self.logger.debug("Skipping unusable JWKS entry", kid=key_data.get("kid"), error=str(e))
                continue
            cache[key_data["kid"]] = CachedKey(key=key, expires_at=expires_at)
        self._key_cache = cache

    @staticmethod
    def _is_signing_key(key_data: Dict[str, Any]) -> bool:
        return bool(key_data.get("kid")) and key_data.get("use", "sig") == "sig"

    def _record_refresh(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_jwks_refresh(status, cached_keys=len(self._key_cache))

    def _time_refresh(self):
        if self.metrics is not None:
            return self.metrics.time_operation("jwks_refresh_duration_seconds")
        return nullcontext()

    def get_state(self) -> Dict[str, Any]:
        """Cache and request-budget snapshot for health reporting."""
        now = self._clock()
        return {
            "jwks_url": self.jwks_url,
            "cached_keys": sum(1 for cached in self._key_cache.values() if cached.expires_at > now),
            "rate_limit": self._rate_limiter.get_state(),
        }

    def clear_cache(self):
        """Drop every cached key."""
        self._key_cache.clear()
        self.logger.info("JWKS cache cleared")
