"""
Shared error handling for the User Profile service.

Every exception raised below the HTTP layer carries a stable ``code`` and the
HTTP status it maps to. ``BaseService`` turns them into the JSON error
envelope ``{"success": false, "message", "error", "details", "request_id"}``.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    message: str
    error: str
    details: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None


class AccessLayerException(Exception):
    """Base exception for service errors."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            message=self.message,
            error=self.code,
            details=self.details,
            request_id=request_id_var.get(),
        )


class ConfigurationError(AccessLayerException):
    """Identity provider settings are missing or unusable."""

    status_code = 500

    def __init__(self, message: str = "Server configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
        code: str = "AUTHENTICATION_ERROR",
    ):
        super().__init__(code, message, details)


class MissingCredential(AuthenticationError):
    """No Authorization header on a protected request."""

    def __init__(self, message: str = "No authorization header provided", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MISSING_CREDENTIAL")


class MalformedCredential(AuthenticationError):
    """Authorization header is not ``Bearer <token>``."""

    def __init__(
        self,
        message: str = "Invalid authorization header format. Expected: Bearer <token>",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details, code="MALFORMED_CREDENTIAL")


class TokenExpired(AuthenticationError):
    def __init__(self, message: str = "Token has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="TOKEN_EXPIRED")


class TokenMalformed(AuthenticationError):
    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_TOKEN")


class TokenNotYetValid(AuthenticationError):
    def __init__(self, message: str = "Token not yet valid", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="TOKEN_NOT_YET_VALID")


class SignatureInvalid(AuthenticationError):
    def __init__(self, message: str = "Token signature is invalid", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="SIGNATURE_INVALID")


class KeyResolutionError(AuthenticationError):
    """Signing key for a token could not be resolved."""

    def __init__(
        self,
        message: str = "Unable to resolve signing key",
        details: Optional[Dict[str, Any]] = None,
        code: str = "KEY_RESOLUTION_FAILED",
    ):
        super().__init__(message, details, code=code)


class JWKSUnavailableError(KeyResolutionError):
    """JWKS endpoint unreachable or returned an unusable document."""

    status_code = 503

    def __init__(self, message: str = "Signing keys are unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="JWKS_UNAVAILABLE")


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidUserIdError(AccessLayerException):
    def __init__(self, user_id: str):
        super().__init__("INVALID_USER_ID", "Invalid user ID format", {"user_id": user_id})


class UserNotFoundError(AccessLayerException):
    status_code = 404

    def __init__(self, message: str = "User not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("USER_NOT_FOUND", message, details)


class NotFoundError(AccessLayerException):
    """Unknown route."""

    status_code = 404

    def __init__(self, message: str = "Route not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class DatabaseError(AccessLayerException):
    """Document store failures."""

    status_code = 500

    def __init__(self, message: str = "Database error", details: Optional[Dict[str, Any]] = None):
        super().__init__("DATABASE_ERROR", message, details)
