"""
User profile service: keeps the local record in step with the identity
provider and applies the rules for local profile changes.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from bson import ObjectId

from shared.errors import InvalidUserIdError, UserNotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..auth.identity import IdentityContext
from .models import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    MAX_LIMIT,
    UPDATABLE_FIELDS,
    Pagination,
    UserPage,
    UserProfile,
)
from .repository import MongoUserRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_pagination(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    """Clamp paging parameters: page >= 1, 1 <= limit <= MAX_LIMIT."""
    page = page if page and page >= 1 else DEFAULT_PAGE
    limit = limit if limit and limit >= 1 else DEFAULT_LIMIT
    return page, min(limit, MAX_LIMIT)


def filter_updatable(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the fields a user may change on their own profile."""
    return {name: value for name, value in fields.items() if name in UPDATABLE_FIELDS}


def _clean(value: Optional[str], lower: bool = False) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value.lower() if lower else value


class UserService:
    """Profile synchronization and CRUD rules over the user repository."""

    def __init__(
        self,
        repository: MongoUserRepository,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("users.service")

    async def sync_from_identity(self, identity: IdentityContext) -> UserProfile:
        """Upsert the local record from a verified identity and stamp last login."""
        provider_fields = {
            "email": _clean(identity.email, lower=True),
            "username": _clean(identity.username),
            "first_name": _clean(identity.first_name),
            "last_name": _clean(identity.last_name),
            "email_verified": identity.email_verified,
        }
        document = await self.repository.upsert_identity(identity.subject, provider_fields, self.clock())

        self.logger.info("User synced from Keycloak", keycloak_id=identity.subject)
        self._event("user_synced")
        return UserProfile.from_document(document)

    async def get_by_subject(self, subject: str) -> UserProfile:
        document = await self.repository.find_by_subject(subject)
        if document is None:
            raise UserNotFoundError(details={"keycloak_id": subject})
        return UserProfile.from_document(document)

    async def get_by_id(self, user_id: str) -> UserProfile:
        """Fetch by record id; malformed ids are rejected before querying."""
        if not ObjectId.is_valid(user_id):
            raise InvalidUserIdError(user_id)

        document = await self.repository.find_by_id(ObjectId(user_id))
        if document is None:
            raise UserNotFoundError(details={"user_id": user_id})
        return UserProfile.from_document(document)

    async def list_users(self, page: Optional[int] = None, limit: Optional[int] = None) -> UserPage:
        page, limit = normalize_pagination(page, limit)
        documents, total = await self.repository.list_page((page - 1) * limit, limit)

        return UserPage(
            users=[UserProfile.from_document(document) for document in documents],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit),
            ),
        )

    async def update_profile(self, subject: str, fields: Mapping[str, Any]) -> UserProfile:
        """Apply allow-listed changes; other submitted fields are ignored."""
        changes = filter_updatable(fields)
        ignored = sorted(set(fields) - set(changes))
        if ignored:
            self.logger.debug("Ignoring non-updatable fields", keycloak_id=subject, fields=ignored)

        changes["updated_at"] = self.clock()
        document = await self.repository.update_by_subject(subject, changes)
        if document is None:
            raise UserNotFoundError(details={"keycloak_id": subject})

        self.logger.info("User profile updated", keycloak_id=subject, fields=sorted(changes))
        self._event("profile_updated")
        return UserProfile.from_document(document)

    async def soft_delete(self, subject: str) -> UserProfile:
        """Disable the record; it is never removed."""
        document = await self.repository.update_by_subject(
            subject, {"enabled": False, "updated_at": self.clock()}
        )
        if document is None:
            raise UserNotFoundError(details={"keycloak_id": subject})

        self.logger.info("User disabled", keycloak_id=subject)
        self._event("user_disabled")
        return UserProfile.from_document(document)

    async def check_database(self) -> bool:
        return await self.repository.ping()

    def _event(self, event_type: str) -> None:
        if self.metrics is not None:
            self.metrics.record_business_event(event_type)
