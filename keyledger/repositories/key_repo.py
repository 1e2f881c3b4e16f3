import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from keyledger.core.exceptions import (
    DuplicateKey,
    KeyNotFound,
    KeyStillAssigned,
    StorageFailure,
)
from keyledger.models.orm.assignment import AssignmentORM
from keyledger.models.orm.base import utcnow
from keyledger.models.orm.key import KeyORM

logger = logging.getLogger(__name__)


class KeyRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_key(self, key_id: int) -> Optional[KeyORM]:
        try:
            return self.db.get(KeyORM, key_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def list_active_keys(self) -> list[KeyORM]:
        stmt = select(KeyORM).where(KeyORM.is_active.is_(True)).order_by(KeyORM.id)
        try:
            return list(self.db.scalars(stmt).all())
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def create_key(self, identifier: str) -> KeyORM:
        db_key = KeyORM(identifier=identifier, is_active=True, created_at=utcnow())
        try:
            self.db.add(db_key)
            self.db.commit()
            self.db.refresh(db_key)
            return db_key

        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateKey(identifier=identifier) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error creating key %r", identifier)
            raise StorageFailure(original_error=str(e)) from e

    def retire_key(self, key_id: int) -> None:
        """
        Marks an active key as retired, provided it has no open assignment.

        The open-assignment check is part of the same UPDATE statement so a
        concurrently committed assignment is seen by the store, not by a
        separate read. The key row is locked first, the same lock an assign
        takes before inserting, so on PostgreSQL the UPDATE runs with a
        snapshot taken after any in-flight assign has committed.
        """
        has_open_assignment = (
            select(AssignmentORM.id)
            .where(
                AssignmentORM.key_id == KeyORM.id,
                AssignmentORM.returned_at.is_(None),
            )
            .correlate(KeyORM.__table__)
            .exists()
        )
        stmt = (
            update(KeyORM)
            .where(
                KeyORM.id == key_id,
                KeyORM.is_active.is_(True),
                ~has_open_assignment,
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        try:
            self.db.execute(select(KeyORM.id).where(KeyORM.id == key_id).with_for_update())
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error retiring key %s", key_id)
            raise StorageFailure(original_error=str(e)) from e

        if result.rowcount == 1:
            return

        db_key = self.get_key(key_id)
        if db_key is None or not db_key.is_active:
            raise KeyNotFound(key_id=key_id)
        raise KeyStillAssigned(key_id=key_id)
