"""
Identity context derived from verified Keycloak claims.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class IdentityContext:
    """Authenticated request identity derived from a verified JWT."""

    subject: str
    email: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_verified: bool = False
    realm_roles: Tuple[str, ...] = ()
    client_roles: Tuple[str, ...] = ()
    claims: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def token_summary(self) -> Dict[str, Any]:
        """Claim summary returned alongside the profile."""
        return {
            "keycloak_id": self.subject,
            "email": self.email,
            "username": self.username,
            "roles": list(self.realm_roles),
            "client_roles": list(self.client_roles),
        }


def _str_claim(claims: Mapping[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def _roles(container: Any) -> Tuple[str, ...]:
    if not isinstance(container, dict):
        return ()
    roles = container.get("roles")
    if not isinstance(roles, list):
        return ()
    return tuple(role for role in roles if isinstance(role, str))


def identity_from_claims(claims: Mapping[str, Any], client_id: Optional[str]) -> IdentityContext:
    """Map a verified claim set to an ``IdentityContext``.

    Client roles come from ``resource_access[client_id]`` only; roles granted
    on other clients of the realm are ignored.
    """
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ValueError("claims missing subject")

    resource_access = claims.get("resource_access")
    client_access = resource_access.get(client_id) if client_id and isinstance(resource_access, dict) else None

    return IdentityContext(
        subject=subject,
        email=_str_claim(claims, "email"),
        username=_str_claim(claims, "preferred_username", "username"),
        first_name=_str_claim(claims, "given_name"),
        last_name=_str_claim(claims, "family_name"),
        email_verified=claims.get("email_verified") is True,
        realm_roles=_roles(claims.get("realm_access")),
        client_roles=_roles(client_access),
        claims=dict(claims),
    )
