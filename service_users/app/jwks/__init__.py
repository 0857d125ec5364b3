"""
JWKS client package.

Retrieves and caches the JSON Web Key Set published by the Keycloak realm so
token signatures can be verified without shared secrets.

Key points:
- Keys are cached per kid for a bounded TTL (24h by default).
- A cache miss refetches the whole set to pick up rotated keys.
- Fetches are capped per minute so a flood of unknown kids cannot hammer the IdP.
"""

from .client import JWKSKeyResolver
from .rate_limiter import SlidingWindowRateLimiter

__all__ = ["JWKSKeyResolver", "SlidingWindowRateLimiter"]
