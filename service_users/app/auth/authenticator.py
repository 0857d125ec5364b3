"""
Bearer-token authentication for protected routes.
"""

from typing import Optional

from fastapi import Request

from shared.errors import MalformedCredential, MissingCredential, TokenMalformed
from shared.logging import get_logger, set_user_context
from .identity import IdentityContext, identity_from_claims
from .verifier import TokenVerifier


class KeycloakAuthenticator:
    """Authenticates requests with a Keycloak-issued bearer token.

    Used as a FastAPI dependency, so a failure rejects the request before the
    route handler runs and the verifier's error code reaches the client as is.
    """

    def __init__(self, verifier: TokenVerifier, client_id: Optional[str]):
        self.verifier = verifier
        self.client_id = client_id
        self.logger = get_logger("users.auth")

    async def __call__(self, request: Request) -> IdentityContext:
        return await self.authenticate(request)

    async def authenticate(self, request: Request) -> IdentityContext:
        """Authenticate the incoming request using the Authorization bearer token."""
        token = self.extract_token(request.headers.get("Authorization"))

        claims = await self.verifier.verify(token)
        try:
            identity = identity_from_claims(claims, self.client_id)
        except ValueError as e:
            raise TokenMalformed(str(e)) from e

        request.state.identity = identity
        set_user_context(identity.subject)
        self.logger.debug(
            "Request authenticated",
            path=request.url.path,
            roles=list(identity.realm_roles),
        )
        return identity

    @staticmethod
    def extract_token(authorization: Optional[str]) -> str:
        """Return the token from an ``Authorization: Bearer <token>`` header."""
        if not authorization:
            raise MissingCredential()

        if not authorization.startswith("Bearer "):
            raise MalformedCredential('Authorization header must start with "Bearer "')

        parts = authorization.split(" ")
        if len(parts) != 2:
            raise MalformedCredential()

        token = parts[1].strip()
        if not token:
            raise MalformedCredential("Token is empty")
        return token
