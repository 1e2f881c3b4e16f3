# repositories/assignment_repo.py
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import DateTime, Integer, insert, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from keyledger.core.exceptions import KeyAlreadyAssigned, KeyNotFound, StorageFailure
from keyledger.models.orm.assignment import OPEN_ASSIGNMENT_INDEX, AssignmentORM
from keyledger.models.orm.key import KeyORM
from keyledger.models.orm.user import UserORM

logger = logging.getLogger(__name__)


def _is_open_assignment_conflict(exc: IntegrityError) -> bool:
    """True when the insert lost the race on the open-assignment index."""
    message = str(exc.orig)
    # PostgreSQL names the index; SQLite names the table and column.
    return (
        OPEN_ASSIGNMENT_INDEX in message
        or "UNIQUE constraint failed: key_assignments.key_id" in message
    )


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_open_assignment(self, key_id: int) -> Optional[AssignmentORM]:
        """Retrieves the assignment currently holding the key, if any."""
        stmt = select(AssignmentORM).where(
            AssignmentORM.key_id == key_id,
            AssignmentORM.returned_at.is_(None),
        )
        try:
            return self.db.scalars(stmt).one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def get_open_assignments(self, key_ids: Iterable[int]) -> dict[int, AssignmentORM]:
        """Maps each given key id that is currently out to its open assignment."""
        key_ids = list(key_ids)
        if not key_ids:
            return {}
        stmt = select(AssignmentORM).where(
            AssignmentORM.key_id.in_(key_ids),
            AssignmentORM.returned_at.is_(None),
        )
        try:
            return {a.key_id: a for a in self.db.scalars(stmt).all()}
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e

    def create_assignment(
        self, key_id: int, assigned_to: int, assigned_by: int, assigned_at: datetime
    ) -> AssignmentORM:
        """
        Inserts a new open assignment and commits it.

        The insert only happens while the key is still active, checked in the
        INSERT statement itself; a key retired after the caller's own checks
        yields KeyNotFound. The key row is locked first so retirement (which
        takes the same lock) cannot interleave on PostgreSQL.

        The open-assignment unique index is the arbiter between assigns: if
        another writer committed an open row for the same key first, the
        insert fails and KeyAlreadyAssigned is raised. Nothing is left behind
        on failure.
        """
        key_is_active = (
            select(KeyORM.id)
            .where(KeyORM.id == key_id, KeyORM.is_active.is_(True))
            .exists()
        )
        stmt = insert(AssignmentORM.__table__).from_select(
            ["key_id", "assigned_to", "assigned_by", "assigned_at"],
            select(
                literal(key_id, Integer),
                literal(assigned_to, Integer),
                literal(assigned_by, Integer),
                literal(assigned_at, DateTime),
            ).where(key_is_active),
        )
        try:
            self.db.execute(select(KeyORM.id).where(KeyORM.id == key_id).with_for_update())

            result = self.db.execute(stmt)
            if result.rowcount == 0:
                self.db.rollback()
                raise KeyNotFound(key_id=key_id)

            db_assignment = self.db.scalars(
                select(AssignmentORM).where(
                    AssignmentORM.key_id == key_id,
                    AssignmentORM.returned_at.is_(None),
                )
            ).one()
            self.db.commit()
            self.db.refresh(db_assignment)

            return db_assignment

        except IntegrityError as e:
            self.db.rollback()
            if _is_open_assignment_conflict(e) or self.get_open_assignment(key_id):
                raise KeyAlreadyAssigned(key_id=key_id) from e
            logger.error("Integrity error creating assignment for key %s: %s", key_id, e.orig)
            raise StorageFailure(original_error=str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error creating assignment for key %s", key_id)
            raise StorageFailure(original_error=str(e)) from e

    def close_open_assignment(
        self, key_id: int, returned_at: datetime
    ) -> Optional[AssignmentORM]:
        """
        Closes the key's open assignment and commits.

        The update is conditional on the row still being open, so two
        concurrent returns close it exactly once. Returns the closed row, or
        None when there was nothing to close.
        """
        try:
            open_assignment = self.get_open_assignment(key_id)
            if open_assignment is None:
                return None

            result = self.db.execute(
                update(AssignmentORM)
                .where(
                    AssignmentORM.id == open_assignment.id,
                    AssignmentORM.returned_at.is_(None),
                )
                .values(returned_at=returned_at)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

            if result.rowcount == 0:
                return None

            self.db.refresh(open_assignment)
            return open_assignment

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage error returning key %s", key_id)
            raise StorageFailure(original_error=str(e)) from e

    def get_history(self, key_id: int) -> list[tuple[AssignmentORM, str, str]]:
        """
        Every assignment of the key with the holder's and actor's email,
        newest first. Ties on assigned_at fall back to insertion order.
        """
        holder = aliased(UserORM)
        actor = aliased(UserORM)
        stmt = (
            select(AssignmentORM, holder.email, actor.email)
            .join(holder, AssignmentORM.assigned_to == holder.id)
            .join(actor, AssignmentORM.assigned_by == actor.id)
            .where(AssignmentORM.key_id == key_id)
            .order_by(AssignmentORM.assigned_at.desc(), AssignmentORM.id.desc())
        )
        try:
            return [tuple(row) for row in self.db.execute(stmt).all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure(original_error=str(e)) from e
