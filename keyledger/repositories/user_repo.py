import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from keyledger.core.exceptions import DuplicateEmail, StorageFailure, UserNotFound
from keyledger.models.orm.base import utcnow
from keyledger.models.orm.user import UserORM

logger = logging.getLogger(__name__)


class UserRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_user(self, user_id: int) -> Optional[UserORM]:
        try:
            return self.db.get(UserORM, user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def get_active_user(self, user_id: int) -> Optional[UserORM]:
        user = self.get_user(user_id)
        if user is None or not user.is_active:
            return None
        return user

    def get_active_user_by_email(self, email: str) -> Optional[UserORM]:
        stmt = select(UserORM).where(
            UserORM.email == email, UserORM.is_active.is_(True)
        )
        try:
            return self.db.scalars(stmt).one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def list_users(self) -> list[UserORM]:
        try:
            return list(self.db.scalars(select(UserORM).order_by(UserORM.id)).all())
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def count_users(self) -> int:
        try:
            return self.db.scalar(select(func.count()).select_from(UserORM))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def create_user(self, email: str, password_hash: str) -> UserORM:
        now = utcnow()
        db_user = UserORM(
            email=email,
            password_hash=password_hash,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(db_user)
            self.db.commit()
            self.db.refresh(db_user)
            return db_user

        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateEmail(email=email) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error creating user")
            raise StorageFailure(original_error=str(e)) from e

    def update_user(
        self,
        user_id: int,
        email: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> UserORM:
        """
        Applies changes to the fixed set of updatable fields.

        Fields left as None are not touched.
        """
        db_user = self.get_user(user_id)
        if db_user is None:
            raise UserNotFound(user_id=user_id)

        if email is not None:
            db_user.email = email
        if is_active is not None:
            db_user.is_active = is_active
        db_user.updated_at = utcnow()

        try:
            self.db.commit()
            self.db.refresh(db_user)
            return db_user

        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateEmail(email=email) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error updating user %s", user_id)
            raise StorageFailure(original_error=str(e)) from e
