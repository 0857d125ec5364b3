"""
Tests for mapping verified claims to an identity context.
"""

import dataclasses

import pytest

from service_users.app.auth.identity import IdentityContext, identity_from_claims


@pytest.fixture
def claims():
    """Keycloak access token claims."""
    return {
        "sub": "f3c1a8e2-1111-2222-3333-444455556666",
        "email": "jane@example.com",
        "preferred_username": "jane",
        "given_name": "Jane",
        "family_name": "Doe",
        "email_verified": True,
        "realm_access": {"roles": ["user", "admin"]},
        "resource_access": {
            "user-profile": {"roles": ["profile-admin"]},
            "account": {"roles": ["manage-account"]},
        },
    }


def test_maps_named_fields(claims):
    identity = identity_from_claims(claims, "user-profile")

    assert identity.subject == claims["sub"]
    assert identity.email == "jane@example.com"
    assert identity.username == "jane"
    assert identity.first_name == "Jane"
    assert identity.last_name == "Doe"
    assert identity.email_verified is True
    assert identity.realm_roles == ("user", "admin")
    assert identity.claims["preferred_username"] == "jane"


def test_client_roles_scoped_to_client(claims):
    """Roles granted on other clients of the realm are not exposed."""
    assert identity_from_claims(claims, "user-profile").client_roles == ("profile-admin",)
    assert identity_from_claims(claims, "other-client").client_roles == ()
    assert identity_from_claims(claims, None).client_roles == ()


def test_username_fallback(claims):
    del claims["preferred_username"]
    claims["username"] = "jdoe"

    assert identity_from_claims(claims, None).username == "jdoe"


def test_minimal_claims():
    identity = identity_from_claims({"sub": "abc"}, "user-profile")

    assert identity == IdentityContext(subject="abc")
    assert identity.email_verified is False
    assert identity.realm_roles == ()


def test_email_verified_requires_true(claims):
    claims["email_verified"] = "true"
    assert identity_from_claims(claims, None).email_verified is False


def test_malformed_role_containers(claims):
    claims["realm_access"] = ["admin"]
    claims["resource_access"] = {"user-profile": {"roles": "admin"}}

    identity = identity_from_claims(claims, "user-profile")
    assert identity.realm_roles == ()
    assert identity.client_roles == ()


def test_missing_subject(claims):
    del claims["sub"]

    with pytest.raises(ValueError):
        identity_from_claims(claims, None)


def test_identity_is_immutable(claims):
    identity = identity_from_claims(claims, None)

    with pytest.raises(dataclasses.FrozenInstanceError):
        identity.subject = "someone-else"


def test_token_summary(claims):
    summary = identity_from_claims(claims, "user-profile").token_summary()

    assert summary == {
        "keycloak_id": claims["sub"],
        "email": "jane@example.com",
        "username": "jane",
        "roles": ["user", "admin"],
        "client_roles": ["profile-admin"],
    }
