# services/user_service.py
import logging
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from keyledger.core.auth import hash_password
from keyledger.core.exceptions import NoUpdates
from keyledger.models.schemas.user import (
    UserCreatedModel,
    UserCreateModel,
    UserModel,
    UserUpdateModel,
)
from keyledger.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session):
        self.user_repo = UserRepository(db)

    def is_active_user(self, user_id: int) -> bool:
        return self.user_repo.get_active_user(user_id) is not None

    def list_users(self) -> list[UserModel]:
        return [UserModel.model_validate(u) for u in self.user_repo.list_users()]

    def create_user(
        self, user_data: UserCreateModel, password: Optional[str] = None
    ) -> UserCreatedModel:
        """
        Creates an active user. Without an explicit password a random
        temporary one is generated and returned once in the response.
        """
        temp_password = password or secrets.token_urlsafe(12)
        user = self.user_repo.create_user(
            email=user_data.email, password_hash=hash_password(temp_password)
        )
        logger.info("User %s created", user.id)
        return UserCreatedModel(id=user.id, email=user.email, temp_password=temp_password)

    def update_user(self, user_id: int, user_data: UserUpdateModel) -> UserModel:
        changes = user_data.model_dump(exclude_none=True)
        if not changes:
            raise NoUpdates(user_id=user_id)

        user = self.user_repo.update_user(user_id, **changes)
        logger.info("User %s updated: %s", user_id, sorted(changes))
        return UserModel.model_validate(user)

    def deactivate_user(self, user_id: int) -> None:
        # Raises UserNotFound for unknown ids
        self.user_repo.update_user(user_id, is_active=False)
        logger.info("User %s deactivated", user_id)

    def ensure_admin(self, email: str, password: str) -> bool:
        """Creates the bootstrap admin if the user table is empty."""
        if self.user_repo.count_users():
            return False
        self.create_user(UserCreateModel(email=email), password=password)
        logger.info("Bootstrap admin %s created", email)
        return True
