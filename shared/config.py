"""
Shared configuration management for the User Profile service.
"""

from typing import Optional
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="ACCESS_ENV")
    log_level: str = Field(default="info", validation_alias="ACCESS_LOG_LEVEL")

    # Keycloak
    keycloak_url: Optional[str] = Field(default=None, validation_alias="KEYCLOAK_URL")
    keycloak_realm: Optional[str] = Field(default=None, validation_alias="KEYCLOAK_REALM")
    keycloak_client_id: Optional[str] = Field(default=None, validation_alias="KEYCLOAK_CLIENT_ID")
    keycloak_jwks_url: Optional[str] = Field(default=None, validation_alias="KEYCLOAK_REALM_PUBLIC_KEY_URL")

    # Token verification
    jwt_algorithm: str = Field(default="RS256", validation_alias="JWT_ALGORITHM")
    jwt_leeway_seconds: int = Field(default=0, validation_alias="JWT_LEEWAY_SECONDS")
    jwks_cache_ttl_seconds: int = Field(default=86400, validation_alias="JWKS_CACHE_TTL_SECONDS")
    jwks_requests_per_minute: int = Field(default=10, validation_alias="JWKS_REQUESTS_PER_MINUTE")
    jwks_timeout_seconds: float = Field(default=30.0, validation_alias="JWKS_TIMEOUT_SECONDS")

    # CORS
    frontend_url: str = Field(default="http://localhost:3000", validation_alias="FRONTEND_URL")

    # Document store
    mongodb_url: str = Field(default="mongodb://localhost:27017/users", validation_alias="MONGODB_URL")
    mongodb_database: Optional[str] = Field(default=None, validation_alias="MONGODB_DATABASE")

    @property
    def issuer(self) -> Optional[str]:
        """Realm issuer, or None when Keycloak is not configured."""
        if not self.keycloak_url or not self.keycloak_realm:
            return None
        return f"{self.keycloak_url.rstrip('/')}/realms/{self.keycloak_realm}"

    @property
    def jwks_url(self) -> Optional[str]:
        """Explicit JWKS URL, or the realm's certs endpoint."""
        if self.keycloak_jwks_url:
            return self.keycloak_jwks_url
        issuer = self.issuer
        if issuer is None:
            return None
        return f"{issuer}/protocol/openid-connect/certs"

    @property
    def database_name(self) -> str:
        """Database name from settings, else from the connection string path."""
        if self.mongodb_database:
            return self.mongodb_database
        path = urlparse(self.mongodb_url).path.lstrip("/")
        return path or "users"


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = Field(default="0.0.0.0", validation_alias="ACCESS_HOST")

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
