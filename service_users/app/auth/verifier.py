"""
Token verification against the Keycloak realm.
"""

from typing import Any, Dict, List, Optional

import jwt
from jwt.exceptions import (
    ExpiredSignatureError,
    ImmatureSignatureError,
    InvalidAlgorithmError,
    InvalidAudienceError,
    InvalidSignatureError,
    InvalidTokenError,
    MissingRequiredClaimError,
)

from shared.errors import (
    AuthenticationError,
    ConfigurationError,
    SignatureInvalid,
    TokenExpired,
    TokenMalformed,
    TokenNotYetValid,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.client import JWKSKeyResolver

REQUIRED_CLAIMS: List[str] = ["exp", "sub"]


class TokenVerifier:
    """Validates signature, issuer, audience and validity window of a token.

    Audience enforcement is best-effort: when a token fails only on ``aud``
    it is decoded a second time without audience checks. Keycloak access
    tokens usually carry ``aud: account`` rather than the client id.
    """

    def __init__(
        self,
        key_resolver: JWKSKeyResolver,
        issuer: Optional[str],
        audience: Optional[str] = None,
        algorithm: str = "RS256",
        leeway: float = 0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.key_resolver = key_resolver
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self.leeway = leeway
        self.metrics = metrics
        self.logger = get_logger("users.verifier")

    async def verify(self, token: str) -> Dict[str, Any]:
        """Verify a compact JWT and return its claims."""
        if not self.issuer:
            raise ConfigurationError(
                "Server configuration error: KEYCLOAK_URL and KEYCLOAK_REALM must be set"
            )

        try:
            header = jwt.get_unverified_header(token)
        except InvalidTokenError as e:
            self._record("INVALID_TOKEN")
            raise TokenMalformed(details={"error": str(e)}) from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            self._record("INVALID_TOKEN")
            raise TokenMalformed("Token header missing kid (key ID)")

        try:
            signing_key = await self.key_resolver.get_signing_key(kid)
        except AuthenticationError as e:
            self._record(e.code)
            raise

        try:
            claims = self._decode(token, signing_key.key, verify_audience=self.audience is not None)
        except (InvalidAudienceError, MissingRequiredClaimError) as e:
            if not self._is_audience_failure(e):
                raise self._fail(e) from e
            self.logger.warning(
                "Audience validation failed, retrying without audience",
                expected_audience=self.audience,
                error=str(e),
            )
            try:
                claims = self._decode(token, signing_key.key, verify_audience=False)
            except InvalidTokenError as retry_error:
                raise self._fail(retry_error) from retry_error
            self._record("audience_fallback")
            return claims
        except InvalidTokenError as e:
            raise self._fail(e) from e

        self._record("ok")
        return claims

    def _decode(self, token: str, key: Any, *, verify_audience: bool) -> Dict[str, Any]:
        return jwt.decode(
            token,
            key,
            algorithms=[self.algorithm],
            issuer=self.issuer,
            audience=self.audience if verify_audience else None,
            leeway=self.leeway,
            options={"require": REQUIRED_CLAIMS, "verify_aud": verify_audience, "verify_iat": False},
        )

    def _is_audience_failure(self, error: InvalidTokenError) -> bool:
        if self.audience is None:
            return False
        if isinstance(error, InvalidAudienceError):
            return True
        return isinstance(error, MissingRequiredClaimError) and error.claim == "aud"

    @staticmethod
    def _translate(error: InvalidTokenError) -> AuthenticationError:
        """Map a PyJWT error onto the service's token error taxonomy."""
        details = {"error": str(error)}
        if isinstance(error, ExpiredSignatureError):
            return TokenExpired(details=details)
        if isinstance(error, ImmatureSignatureError):
            return TokenNotYetValid(details=details)
        # InvalidSignatureError subclasses DecodeError; check it first
        if isinstance(error, (InvalidSignatureError, InvalidAlgorithmError)):
            return SignatureInvalid(details=details)
        return TokenMalformed(details=details)

    def _fail(self, error: InvalidTokenError) -> AuthenticationError:
        translated = self._translate(error)
        self._record(translated.code)
        self.logger.warning("Token verification failed", code=translated.code, error=str(error))
        return translated

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_token_validation(status)
            if status == "audience_fallback":
                self.metrics.record_business_event("audience_fallback")
