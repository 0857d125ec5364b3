"""
Authentication for the Users service: token verification against the
Keycloak realm and mapping of verified claims to an identity context.
"""

from .authenticator import KeycloakAuthenticator
from .identity import IdentityContext, identity_from_claims
from .verifier import TokenVerifier

__all__ = ["KeycloakAuthenticator", "IdentityContext", "identity_from_claims", "TokenVerifier"]
