"""
Users service for the User Profile service.

Authenticates requests against Keycloak and serves the locally mirrored
profile of the authenticated user.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.metrics import MetricsCollector
from .auth import IdentityContext, KeycloakAuthenticator, TokenVerifier
from .jwks import JWKSKeyResolver
from .users import MongoUserRepository, UserService, UserUpdateRequest

SERVICE_NAME = "users"
SERVICE_PORT = 5000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _success(message: str, data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


class UsersService(BaseService):
    """Users service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        repository: Optional[MongoUserRepository] = None,
        key_resolver: Optional[JWKSKeyResolver] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(
            SERVICE_NAME,
            SERVICE_PORT,
            config=config or get_config(SERVICE_NAME, SERVICE_PORT),
            metrics=metrics,
        )

        self.repository = repository or MongoUserRepository(
            self.config.mongodb_url,
            self.config.database_name,
        )
        self.key_resolver = key_resolver or JWKSKeyResolver(
            self.config.jwks_url,
            cache_ttl=self.config.jwks_cache_ttl_seconds,
            requests_per_minute=self.config.jwks_requests_per_minute,
            timeout=self.config.jwks_timeout_seconds,
            metrics=self.metrics,
        )
        self.verifier = TokenVerifier(
            self.key_resolver,
            issuer=self.config.issuer,
            audience=self.config.keycloak_client_id,
            algorithm=self.config.jwt_algorithm,
            leeway=self.config.jwt_leeway_seconds,
            metrics=self.metrics,
        )
        self.authenticator = KeycloakAuthenticator(self.verifier, self.config.keycloak_client_id)
        self.user_service = UserService(self.repository, self.metrics)

        self._setup_user_routes()

    async def startup(self):
        if self.config.issuer is None:
            self.logger.error(
                "Keycloak is not configured; protected routes will fail",
                keycloak_url=self.config.keycloak_url,
                keycloak_realm=self.config.keycloak_realm,
            )
        elif self.config.keycloak_client_id is None:
            self.logger.warning("KEYCLOAK_CLIENT_ID not set; token audience is not checked")

        await self.repository.start()

    async def shutdown(self):
        await self.key_resolver.close()
        await self.repository.stop()

    def _setup_user_routes(self):
        """Set up /api/users routes.

        Static paths are registered before ``/api/users/{user_id}`` so they are
        not captured as ids.
        """

        @self.app.get("/api/users/health")
        async def users_health():
            """Database connectivity check."""
            connected = await self.user_service.check_database()
            return _success(
                "User service health check",
                {
                    "database": "connected" if connected else "disconnected",
                    "timestamp": _now_iso(),
                },
            )

        @self.app.get("/api/users/me")
        async def get_current_user(identity: IdentityContext = Depends(self.authenticator)):
            """Sync the caller's record from the token and return it."""
            profile = await self.user_service.sync_from_identity(identity)
            return _success(
                "User profile retrieved successfully",
                {**profile.model_dump(), "token_info": identity.token_summary()},
            )

        @self.app.put("/api/users/me")
        async def update_current_user(
            update: Optional[UserUpdateRequest] = None,
            identity: IdentityContext = Depends(self.authenticator),
        ):
            """Update the caller's editable profile fields."""
            changes = update.changes() if update is not None else {}
            profile = await self.user_service.update_profile(identity.subject, changes)
            return _success("User profile updated successfully", profile.model_dump())

        @self.app.delete("/api/users/me")
        async def delete_current_user(identity: IdentityContext = Depends(self.authenticator)):
            """Disable the caller's record."""
            await self.user_service.soft_delete(identity.subject)
            return _success("User deleted successfully")

        @self.app.post("/api/users/logout")
        async def logout(identity: IdentityContext = Depends(self.authenticator)):
            """Acknowledge logout; tokens stay valid until they expire."""
            self.logger.info("User logged out", keycloak_id=identity.subject)
            self.metrics.record_business_event("user_logged_out")
            return _success(
                "Logout successful. Token should be cleared on frontend.",
                {"timestamp": _now_iso()},
            )

        @self.app.get("/api/users")
        async def list_users(
            page: Optional[int] = Query(None, description="Page number, from 1"),
            limit: Optional[int] = Query(None, description="Page size, at most 100"),
            identity: IdentityContext = Depends(self.authenticator),
        ):
            """List users, newest first."""
            result = await self.user_service.list_users(page, limit)
            return _success(
                "Users retrieved successfully",
                [user.model_dump() for user in result.users],
                pagination=result.pagination.model_dump(),
            )

        @self.app.get("/api/users/{user_id}")
        async def get_user(user_id: str, identity: IdentityContext = Depends(self.authenticator)):
            """Get a user by record id."""
            profile = await self.user_service.get_by_id(user_id)
            return _success("User retrieved successfully", profile.model_dump())

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        return {
            "database": "ok" if await self.user_service.check_database() else "error",
            "keycloak": "ok" if self.config.issuer else "not_configured",
        }


def create_app():
    """Create FastAPI application."""
    service = UsersService()
    return service.app


if __name__ == "__main__":
    service = UsersService()
    service.run()
