"""
Test helper functions and factory methods for the User Profile service.

Tokens are signed with real RSA keys so they pass the same verification path
as Keycloak-issued tokens.
"""

import copy
import json
import time
import uuid
from typing import Dict, Any, Optional, List
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field

import httpx
import jwt
from bson import ObjectId
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

DEFAULT_ISSUER = "http://localhost:8080/realms/users"
DEFAULT_CLIENT_ID = "user-profile"


@dataclass
class TestUser:
    """Test user data."""
    __test__ = False

    user_id: str
    username: str
    email: str
    first_name: str
    last_name: str
    roles: List[str]
    client_roles: List[str] = field(default_factory=list)
    password: str = "password123"


class SigningKey:
    """An RSA key pair published under ``kid``."""

    def __init__(self, kid: Optional[str] = None, key_size: int = 2048):
        self.kid = kid or f"kid-{uuid.uuid4().hex[:8]}"
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    def public_jwk(self, **overrides) -> Dict[str, Any]:
        """Public half as a JWK, ``use: sig`` unless overridden."""
        jwk = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        jwk.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        jwk.update(overrides)
        return jwk


def build_jwks(*keys: SigningKey) -> Dict[str, Any]:
    """JWKS document publishing ``keys``."""
    return {"keys": [key.public_jwk() for key in keys]}


class MockTokenGenerator:
    """Generate Keycloak-shaped JWT access tokens for testing."""

    def __init__(
        self,
        signing_key: Optional[SigningKey] = None,
        issuer: str = DEFAULT_ISSUER,
        client_id: str = DEFAULT_CLIENT_ID,
    ):
        self.signing_key = signing_key or SigningKey()
        self.issuer = issuer
        self.client_id = client_id

    def claims_for(self, user: TestUser, expires_in: int = 3600) -> Dict[str, Any]:
        """Access token claims as Keycloak issues them for ``user``."""
        now = int(time.time())
        return {
            "iss": self.issuer,
            "sub": user.user_id,
            "aud": self.client_id,
            "iat": now,
            "exp": now + expires_in,
            "azp": self.client_id,
            "typ": "Bearer",
            "scope": "openid profile email",
            "preferred_username": user.username,
            "email": user.email,
            "email_verified": True,
            "given_name": user.first_name,
            "family_name": user.last_name,
            "realm_access": {
                "roles": user.roles
            },
            "resource_access": {
                self.client_id: {
                    "roles": user.client_roles
                },
                "account": {
                    "roles": ["manage-account", "view-profile"]
                }
            }
        }

    def generate_access_token(
        self,
        user: TestUser,
        expires_in: int = 3600,
        claims: Optional[Dict[str, Any]] = None,
        remove: Optional[List[str]] = None,
        headers: Optional[Dict[str, Any]] = None,
        key: Optional[Any] = None,
        algorithm: str = "RS256",
    ) -> str:
        """Sign an access token for ``user``.

        ``claims`` are merged over the defaults and ``remove`` drops claims.
        ``key`` overrides the signing key material (e.g. a foreign RSA key or
        an HMAC secret) while the header keeps this generator's ``kid``.
        """
        payload = self.claims_for(user, expires_in)
        payload.update(claims or {})
        for name in remove or []:
            payload.pop(name, None)

        token_headers = {"kid": self.signing_key.kid}
        token_headers.update(headers or {})
        # None drops a header, e.g. to omit the kid
        token_headers = {name: value for name, value in token_headers.items() if value is not None}
        signing_material = key if key is not None else self.signing_key.private_key
        return jwt.encode(payload, signing_material, algorithm=algorithm, headers=token_headers)

    def jwks(self) -> Dict[str, Any]:
        return build_jwks(self.signing_key)


class MockJWKSEndpoint:
    """JWKS endpoint served through ``httpx.MockTransport``; counts fetches."""

    def __init__(self, jwks: Optional[Dict[str, Any]] = None, status_code: int = 200):
        self.jwks = jwks if jwks is not None else {"keys": []}
        self.status_code = status_code
        self.error: Optional[Exception] = None
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.jwks)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class InMemoryUserRepository:
    """Dict-backed stand-in for ``MongoUserRepository`` with the same contract."""

    provider_fields = ("email", "username", "first_name", "last_name", "email_verified")

    def __init__(self, documents: Optional[List[Dict[str, Any]]] = None):
        self.documents: Dict[ObjectId, Dict[str, Any]] = {
            document["_id"]: copy.deepcopy(document) for document in documents or []
        }
        self.available = True
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def ping(self) -> bool:
        return self.available

    def _by_subject(self, subject: str) -> Optional[Dict[str, Any]]:
        return next((doc for doc in self.documents.values() if doc["keycloak_id"] == subject), None)

    async def upsert_identity(self, subject: str, provider_fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        document = self._by_subject(subject)
        if document is None:
            document = {
                "_id": ObjectId(),
                "keycloak_id": subject,
                "phone_number": None,
                "profile_picture": None,
                "preferences": {},
                "created_at": now,
                "updated_at": now,
            }
            self.documents[document["_id"]] = document
        document.update({name: provider_fields.get(name) for name in self.provider_fields})
        document["last_login"] = now
        document["enabled"] = True
        return copy.deepcopy(document)

    async def find_by_subject(self, subject: str) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._by_subject(subject))

    async def find_by_id(self, user_id: ObjectId) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.documents.get(user_id))

    async def list_page(self, skip: int, limit: int):
        ordered = sorted(
            self.documents.values(),
            key=lambda doc: (doc["created_at"], doc["_id"]),
            reverse=True,
        )
        return [copy.deepcopy(doc) for doc in ordered[skip:skip + limit]], len(ordered)

    async def update_by_subject(self, subject: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        document = self._by_subject(subject)
        if document is None:
            return None
        document.update(copy.deepcopy(fields))
        return copy.deepcopy(document)


class TestDataFactory:
    """Factory for creating test data."""
    __test__ = False

    @staticmethod
    def create_test_users() -> List[TestUser]:
        """Create test users."""
        return [
            TestUser(
                user_id="0b0c7f3e-5d7a-4a43-9d3e-1f4c2a9b8e01",
                username="john.doe",
                email="John.Doe@example.com",
                first_name="John",
                last_name="Doe",
                roles=["user"],
                client_roles=["profile-reader"]
            ),
            TestUser(
                user_id="6a1e2d9c-3b4f-4c5d-8e7f-9a0b1c2d3e02",
                username="jane.smith",
                email="jane.smith@example.com",
                first_name="Jane",
                last_name="Smith",
                roles=["user", "admin"],
                client_roles=["profile-admin"]
            ),
        ]

    @staticmethod
    def create_user_documents(count: int) -> List[Dict[str, Any]]:
        """Stored user documents with distinct, increasing creation times."""
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            {
                "_id": ObjectId(),
                "keycloak_id": f"subject-{index}",
                "email": f"user{index}@example.com",
                "username": f"user{index}",
                "first_name": "User",
                "last_name": str(index),
                "enabled": True,
                "email_verified": True,
                "phone_number": None,
                "profile_picture": None,
                "preferences": {},
                "last_login": base + timedelta(hours=index),
                "created_at": base + timedelta(hours=index),
                "updated_at": base + timedelta(hours=index),
            }
            for index in range(count)
        ]


class TestEnvironment:
    """Test environment configuration."""
    __test__ = False

    @staticmethod
    def get_mock_config(
        issuer_base: str = "http://localhost:8080",
        realm: str = "users",
        client_id: Optional[str] = DEFAULT_CLIENT_ID,
    ) -> Dict[str, Any]:
        """Settings matching tokens from ``MockTokenGenerator``."""
        config = {
            "env": "test",
            "log_level": "debug",
            "keycloak_url": issuer_base,
            "keycloak_realm": realm,
            "mongodb_url": "mongodb://localhost:27017/users_test",
            "frontend_url": "http://localhost:3000",
        }
        if client_id is not None:
            config["keycloak_client_id"] = client_id
        return config


# Global instances for easy access
test_data_factory = TestDataFactory()
test_environment = TestEnvironment()
