"""
User Repository

Data access layer for registered users.
"""

import logging
from typing import Optional

from sqlmodel import select
from sqlalchemy.exc import IntegrityError

from chatrelay.infrastructure.db.database import get_session_context
from chatrelay.infrastructure.db.models.user import UserModel
from chatrelay.infrastructure.db.repositories.billing_repository import to_uuid
from chatrelay.infrastructure.exceptions import DuplicateError
from chatrelay.domain.auth import User


logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Repository for user accounts."""
    
    async def get_user(self, user_id: str) -> Optional[User]:
        user_uuid = to_uuid(user_id)
        if user_uuid is None:
            return None
        
        async with get_session_context() as session:
            model = await session.get(UserModel, user_uuid)
            return self._to_domain(model) if model else None
    
    async def get_user_by_email(self, email: str) -> Optional[User]:
        model = await self._get_model_by_email(email)
        return self._to_domain(model) if model else None
    
    async def get_password_hash(self, email: str) -> Optional[tuple[User, str]]:
        """Return the user and stored hash for a login attempt."""
        model = await self._get_model_by_email(email)
        if not model:
            return None
        return self._to_domain(model), model.password_hash
    
    async def create_user(
        self,
        email: str,
        password_hash: str,
        name: Optional[str] = None,
    ) -> User:
        """
        Create a new user.
        
        Raises:
            DuplicateError: if the email is already registered
        """
        try:
            async with get_session_context() as session:
                model = UserModel(
                    email=normalize_email(email),
                    password_hash=password_hash,
                    name=name,
                )
                session.add(model)
                await session.flush()
                user = self._to_domain(model)
        except IntegrityError as e:
            raise DuplicateError(
                "Email already registered",
                operation="create",
                table="users",
                original_error=e,
            )
        
        logger.info(f"Created user {user.id}")
        return user
    
    async def _get_model_by_email(self, email: str) -> Optional[UserModel]:
        async with get_session_context() as session:
            result = await session.execute(
                select(UserModel).where(UserModel.email == normalize_email(email))
            )
            return result.scalar_one_or_none()
    
    def _to_domain(self, model: UserModel) -> User:
        return User(
            id=str(model.id),
            email=model.email,
            name=model.name,
            created_at=model.created_at,
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_user_repo_instance: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    """Get or create user repository singleton."""
    global _user_repo_instance
    
    if _user_repo_instance is None:
        _user_repo_instance = UserRepository()
    
    return _user_repo_instance
