"""
MongoDB persistence layer for user profiles.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from shared.errors import DatabaseError
from shared.logging import get_logger

PROVIDER_FIELDS = ("email", "username", "first_name", "last_name", "email_verified")


class MongoUserRepository:
    """Async user collection access over Motor."""

    def __init__(
        self,
        url: str,
        database: str,
        collection: str = "users",
        *,
        client: Optional[AsyncIOMotorClient] = None,
        server_selection_timeout_ms: int = 5000,
    ):
        self.url = url
        self.database_name = database
        self.collection_name = collection
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.logger = get_logger("users.repository")
        self._client = client
        self._owns_client = client is None

    @property
    def collection(self):
        if self._client is None:
            raise DatabaseError("Database client not started")
        return self._client[self.database_name][self.collection_name]

    async def start(self):
        """Connect, verify the server answers, and ensure indexes.

        Raises DatabaseError when the server cannot be reached.
        """
        if self._client is None:
            self._client = AsyncIOMotorClient(
                self.url,
                tz_aware=True,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
        try:
            await self._client.admin.command("ping")
            await self.ensure_indexes()
        except PyMongoError as e:
            self.logger.error("Failed to start MongoDB persistence", error=str(e))
            raise DatabaseError(f"Failed to connect to MongoDB: {e}") from e

        self.logger.info("MongoDB persistence started", database=self.database_name)

    async def stop(self):
        """Close the client if this repository created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            self.logger.info("MongoDB persistence stopped")

    async def ensure_indexes(self):
        await self.collection.create_index([("keycloak_id", ASCENDING)], unique=True, name="uniq_keycloak_id")
        await self.collection.create_index([("email", ASCENDING)], name="idx_email")
        await self.collection.create_index([("username", ASCENDING)], name="idx_username")

    async def ping(self) -> bool:
        """Return True when the server answers a ping."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            self.logger.warning("MongoDB ping failed", error=str(e))
            return False

    async def upsert_identity(self, subject: str, provider_fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        """Create or refresh the record for ``subject`` in one atomic write.

        Provider fields, ``last_login`` and ``enabled`` are overwritten, so a
        sign-in re-enables a soft-deleted record. Local fields and the identity
        key are only written on insert.
        """
        update = {
            "$set": {
                **{name: provider_fields.get(name) for name in PROVIDER_FIELDS},
                "last_login": now,
                "enabled": True,
            },
            "$setOnInsert": {
                "keycloak_id": subject,
                "phone_number": None,
                "profile_picture": None,
                "preferences": {},
                "created_at": now,
                "updated_at": now,
            },
        }
        try:
            try:
                return await self._find_one_and_update({"keycloak_id": subject}, update, upsert=True)
            except DuplicateKeyError:
                # Concurrent first login inserted the record; it exists now
                self.logger.info("Concurrent upsert detected, retrying", keycloak_id=subject)
                return await self._find_one_and_update({"keycloak_id": subject}, update, upsert=True)
        except PyMongoError as e:
            self.logger.error("Failed to sync user", keycloak_id=subject, error=str(e))
            raise DatabaseError(f"Failed to sync user: {e}") from e

    async def find_by_subject(self, subject: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.collection.find_one({"keycloak_id": subject})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to get user: {e}") from e

    async def find_by_id(self, user_id: ObjectId) -> Optional[Dict[str, Any]]:
        try:
            return await self.collection.find_one({"_id": user_id})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to get user: {e}") from e

    async def list_page(self, skip: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of users, newest first, and the total count."""
        try:
            cursor = (
                self.collection.find({})
                .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                .skip(skip)
                .limit(limit)
            )
            documents = await cursor.to_list(length=limit)
            total = await self.collection.count_documents({})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to get users: {e}") from e
        return documents, total

    async def update_by_subject(self, subject: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply ``$set`` to an existing record; None when it does not exist."""
        try:
            return await self._find_one_and_update({"keycloak_id": subject}, {"$set": fields}, upsert=False)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to update user: {e}") from e

    async def _find_one_and_update(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool):
        return await self.collection.find_one_and_update(
            query,
            update,
            upsert=upsert,
            return_document=ReturnDocument.AFTER,
        )
