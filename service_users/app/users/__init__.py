"""
User profile storage and business rules.
"""

from .models import UserProfile, UserUpdateRequest
from .repository import MongoUserRepository
from .service import UserService

__all__ = ["UserProfile", "UserUpdateRequest", "MongoUserRepository", "UserService"]
