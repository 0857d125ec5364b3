"""
User profile models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Fields a user may change on their own record; everything else is owned by
# the identity provider or by the service.
UPDATABLE_FIELDS = ("first_name", "last_name", "phone_number", "profile_picture", "preferences")

E164_PATTERN = r"^\+?[1-9]\d{1,14}$"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class UserProfile(BaseModel):
    """User profile as returned by the API."""

    id: str
    keycloak_id: str
    email: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str = ""
    enabled: bool = True
    email_verified: bool = False
    phone_number: Optional[str] = None
    profile_picture: Optional[str] = None
    preferences: Dict[str, Any] = Field(default_factory=dict)
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "UserProfile":
        """Build from a stored document, exposing ``_id`` as ``id``."""
        data = {key: value for key, value in document.items() if key != "_id"}
        data["id"] = str(document["_id"])
        data["full_name"] = f"{document.get('first_name') or ''} {document.get('last_name') or ''}".strip()
        if data.get("preferences") is None:
            data["preferences"] = {}
        return cls.model_validate(data)


class UserUpdateRequest(BaseModel):
    """Profile update body. Unknown fields are dropped, not rejected."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone_number: Optional[str] = Field(default=None, pattern=E164_PATTERN)
    profile_picture: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None

    def changes(self) -> Dict[str, Any]:
        """Fields present in the request body."""
        return self.model_dump(exclude_unset=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class UserPage(BaseModel):
    users: List[UserProfile]
    pagination: Pagination
