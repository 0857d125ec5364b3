"""
Mock Keycloak server providing a realm's discovery, JWKS and token endpoints.

Tokens are RS256-signed with a key published on the certs endpoint, so the
Users service verifies them exactly as it would real Keycloak tokens.
"""

import time
from typing import Dict, Any, Optional

import jwt
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shared.logging import get_logger
from shared.test_helpers import MockTokenGenerator, SigningKey, TestUser, test_data_factory


class MockKeycloakServer:
    """Mock Keycloak server implementation."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        realm: str = "users",
        client_id: str = "user-profile",
        signing_key: Optional[SigningKey] = None,
    ):
        self.logger = get_logger("mock.keycloak")
        self.app = FastAPI(title="Mock Keycloak", version="1.0.0")

        # Mock configuration
        self.realm = realm
        self.client_id = client_id
        self.issuer = f"{base_url.rstrip('/')}/realms/{self.realm}"
        self.signing_key = signing_key or SigningKey(kid="mock-key-1")
        self.tokens = MockTokenGenerator(self.signing_key, issuer=self.issuer, client_id=client_id)

        # Mock users, keyed by username
        self.users: Dict[str, TestUser] = {
            user.username: user for user in test_data_factory.create_test_users()
        }

        self._setup_routes()

    def _setup_routes(self):
        """Set up mock Keycloak routes."""

        @self.app.get("/realms/{realm}/.well-known/openid-configuration")
        async def openid_configuration(realm: str):
            """OpenID Connect configuration."""
            self._check_realm(realm)
            return {
                "issuer": self.issuer,
                "authorization_endpoint": f"{self.issuer}/protocol/openid-connect/auth",
                "token_endpoint": f"{self.issuer}/protocol/openid-connect/token",
                "userinfo_endpoint": f"{self.issuer}/protocol/openid-connect/userinfo",
                "jwks_uri": f"{self.issuer}/protocol/openid-connect/certs",
                "end_session_endpoint": f"{self.issuer}/protocol/openid-connect/logout",
                "grant_types_supported": ["password", "refresh_token"],
                "response_types_supported": ["code"],
                "subject_types_supported": ["public"],
                "id_token_signing_alg_values_supported": ["RS256"],
                "scopes_supported": ["openid", "profile", "email"]
            }

        @self.app.get("/realms/{realm}/protocol/openid-connect/certs")
        async def jwks_endpoint(realm: str):
            """JWKS endpoint."""
            self._check_realm(realm)
            return self.tokens.jwks()

        @self.app.post("/realms/{realm}/protocol/openid-connect/token")
        async def token_endpoint(
            realm: str,
            grant_type: str = Query(...),
            client_id: str = Query(...),
            username: Optional[str] = Query(None),
            password: Optional[str] = Query(None),
            refresh_token: Optional[str] = Query(None)
        ):
            """Token endpoint for authentication."""
            self._check_realm(realm)

            if client_id != self.client_id:
                raise HTTPException(status_code=400, detail="Invalid client")

            if grant_type == "password":
                return self._handle_password_grant(username, password)
            elif grant_type == "refresh_token":
                return self._handle_refresh_token(refresh_token)
            else:
                raise HTTPException(status_code=400, detail="Unsupported grant type")

        @self.app.get("/realms/{realm}/protocol/openid-connect/userinfo")
        async def userinfo_endpoint(
            realm: str,
            credentials: HTTPAuthorizationCredentials = Depends(HTTPBearer())
        ):
            """User info endpoint."""
            self._check_realm(realm)
            payload = self._decode(credentials.credentials)
            return {
                "sub": payload["sub"],
                "preferred_username": payload.get("preferred_username"),
                "email": payload.get("email"),
                "email_verified": payload.get("email_verified", False),
                "given_name": payload.get("given_name"),
                "family_name": payload.get("family_name"),
            }

        @self.app.post("/realms/{realm}/protocol/openid-connect/logout")
        async def logout_endpoint(realm: str):
            """Logout endpoint."""
            self._check_realm(realm)
            return {"message": "Logged out successfully"}

    def _check_realm(self, realm: str):
        if realm != self.realm:
            raise HTTPException(status_code=404, detail="Realm not found")

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.signing_key.private_key.public_key(),
                algorithms=["RS256"],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    def _handle_password_grant(self, username: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """Handle password grant type."""
        if not username or not password:
            raise HTTPException(status_code=400, detail="Username and password required")

        user = self.users.get(username)
        if user is None or user.password != password:
            self.logger.info("Mock login rejected", username=username)
            raise HTTPException(status_code=401, detail="Invalid credentials")

        return self._generate_token_pair(user)

    def _handle_refresh_token(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Handle refresh token grant type."""
        if not refresh_token:
            raise HTTPException(status_code=400, detail="Refresh token required")

        payload = self._decode(refresh_token)
        if payload.get("typ") != "Refresh":
            raise HTTPException(status_code=401, detail="Invalid refresh token")

        user = next((user for user in self.users.values() if user.user_id == payload["sub"]), None)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid refresh token")

        return self._generate_token_pair(user)

    def _generate_token_pair(self, user: TestUser) -> Dict[str, Any]:
        """Generate access and refresh token pair."""
        now = int(time.time())
        access_token = self.tokens.generate_access_token(user, expires_in=3600)
        refresh_token = self.tokens.generate_access_token(
            user,
            claims={"typ": "Refresh", "exp": now + 2592000},
            remove=["realm_access", "resource_access", "given_name", "family_name"],
        )

        return {
            "access_token": access_token,
            "expires_in": 3600,
            "refresh_expires_in": 2592000,  # 30 days
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "not-before-policy": 0,
            "scope": "openid profile email"
        }


def create_app():
    """Create mock Keycloak application."""
    server = MockKeycloakServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
