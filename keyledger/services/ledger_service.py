# services/ledger_service.py
"""
Assignment ledger: who holds each key, and since when.

Per key the state is derived from its assignment rows:

    AVAILABLE --assign()--> ASSIGNED --return_key()--> AVAILABLE

A key is ASSIGNED exactly when it has an open row (returned_at IS NULL). The
single-holder rule is enforced by a partial unique index in the store, so the
ledger holds no in-memory state and needs no locks; instances are cheap and
built per request around an injected session.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from keyledger.core.exceptions import (
    InvalidActor,
    InvalidHolder,
    KeyAlreadyAssigned,
    KeyNotFound,
    NoOpenAssignment,
)
from keyledger.models.orm.assignment import AssignmentORM
from keyledger.models.orm.base import utcnow
from keyledger.models.orm.key import KeyState
from keyledger.models.schemas.assignment import AssignmentHistoryModel
from keyledger.models.schemas.key import KeyModel
from keyledger.repositories.assignment_repo import AssignmentRepository
from keyledger.services.key_service import KeyRegistry
from keyledger.services.user_service import UserService

logger = logging.getLogger(__name__)


class AssignmentLedger:
    def __init__(
        self,
        db: Session,
        key_registry: Optional[KeyRegistry] = None,
        users: Optional[UserService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.assignment_repo = AssignmentRepository(db)
        self.key_registry = key_registry or KeyRegistry(db)
        self.users = users or UserService(db)
        self.clock = clock

    def assign(self, key_id: int, holder_id: int, actor_id: int) -> int:
        """
        Hands the key to ``holder_id`` on behalf of ``actor_id``.

        Returns the new assignment id. Raises KeyNotFound, InvalidHolder,
        InvalidActor, KeyAlreadyAssigned or StorageFailure; on any failure
        the ledger is unchanged.
        """
        if not self.key_registry.is_active_key(key_id):
            raise KeyNotFound(key_id=key_id)
        if not self.users.is_active_user(holder_id):
            raise InvalidHolder(user_id=holder_id)
        if not self.users.is_active_user(actor_id):
            raise InvalidActor(user_id=actor_id)

        # Fast path only; the unique index decides races.
        current = self.assignment_repo.get_open_assignment(key_id)
        if current is not None:
            logger.warning(
                "Rejected assign of key %s to user %s: held by user %s (assignment %s)",
                key_id,
                holder_id,
                current.assigned_to,
                current.id,
            )
            raise KeyAlreadyAssigned(key_id=key_id, assignment_id=current.id)

        try:
            assignment = self.assignment_repo.create_assignment(
                key_id=key_id,
                assigned_to=holder_id,
                assigned_by=actor_id,
                assigned_at=self.clock(),
            )
        except KeyAlreadyAssigned:
            logger.warning(
                "Rejected assign of key %s to user %s: lost race to a concurrent assign",
                key_id,
                holder_id,
            )
            raise
        except KeyNotFound:
            logger.warning(
                "Rejected assign of key %s to user %s: key retired concurrently",
                key_id,
                holder_id,
            )
            raise

        logger.info(
            "Key %s assigned to user %s by user %s (assignment %s)",
            key_id,
            holder_id,
            actor_id,
            assignment.id,
        )
        return assignment.id

    def return_key(
        self, key_id: int, actor_id: int, strict: bool = False
    ) -> Optional[AssignmentORM]:
        """
        Closes the key's open assignment.

        Returning a key that is not out is a silent no-op that returns None,
        unless ``strict`` is set, in which case NoOpenAssignment is raised.
        No ownership check is made; any authorized actor may return a key.
        """
        closed = self.assignment_repo.close_open_assignment(key_id, self.clock())
        if closed is None:
            logger.warning(
                "Return of key %s by user %s had no open assignment", key_id, actor_id
            )
            if strict:
                raise NoOpenAssignment(key_id=key_id)
            return None

        logger.info(
            "Key %s returned by user %s (assignment %s, holder %s)",
            key_id,
            actor_id,
            closed.id,
            closed.assigned_to,
        )
        return closed

    def history(self, key_id: int) -> list[AssignmentHistoryModel]:
        """All assignments of the key, open and closed, newest first."""
        return [
            AssignmentHistoryModel(
                id=assignment.id,
                key_id=assignment.key_id,
                assigned_to=assignment.assigned_to,
                assigned_by=assignment.assigned_by,
                assigned_at=assignment.assigned_at,
                returned_at=assignment.returned_at,
                assigned_to_display=holder_email,
                assigned_by_display=actor_email,
            )
            for assignment, holder_email, actor_email in self.assignment_repo.get_history(
                key_id
            )
        ]

    def key_state(self, key_id: int) -> KeyState:
        if self.assignment_repo.get_open_assignment(key_id) is None:
            return KeyState.AVAILABLE
        return KeyState.ASSIGNED

    def list_active_keys(self) -> list[KeyModel]:
        """Active keys from the registry, each marked AVAILABLE or ASSIGNED."""
        keys = self.key_registry.list_active_keys()
        open_assignments = self.assignment_repo.get_open_assignments(k.id for k in keys)

        results = []
        for key in keys:
            current = open_assignments.get(key.id)
            results.append(
                KeyModel(
                    id=key.id,
                    identifier=key.identifier,
                    is_active=key.is_active,
                    created_at=key.created_at,
                    state=KeyState.ASSIGNED if current else KeyState.AVAILABLE,
                    current_assignment_id=current.id if current else None,
                    current_holder_id=current.assigned_to if current else None,
                )
            )
        return results
