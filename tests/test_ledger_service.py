"""
Tests for the assignment ledger.

Covers the AVAILABLE -> ASSIGNED -> AVAILABLE cycle, the single-holder rule,
history ordering and the precondition errors.
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from keyledger.core.exceptions import (
    InvalidActor,
    InvalidHolder,
    KeyAlreadyAssigned,
    KeyNotFound,
    NoOpenAssignment,
    StorageFailure,
)
from keyledger.models.orm.assignment import AssignmentORM
from keyledger.models.orm.key import KeyState
from keyledger.repositories.key_repo import KeyRepository
from keyledger.repositories.user_repo import UserRepository
from keyledger.services.ledger_service import AssignmentLedger


def _rows(db_session, key_id):
    db_session.expire_all()
    stmt = select(AssignmentORM).where(AssignmentORM.key_id == key_id).order_by(AssignmentORM.id)
    return list(db_session.scalars(stmt).all())


def _open_count(db_session, key_id):
    stmt = select(func.count()).select_from(AssignmentORM).where(
        AssignmentORM.key_id == key_id, AssignmentORM.returned_at.is_(None)
    )
    return db_session.scalar(stmt)


class TestAssign:
    def test_assign_opens_assignment(self, ledger, db_session, key, admin, alice):
        assignment_id = ledger.assign(key.id, alice.id, admin.id)

        rows = _rows(db_session, key.id)
        assert [r.id for r in rows] == [assignment_id]
        assert rows[0].assigned_to == alice.id
        assert rows[0].assigned_by == admin.id
        assert rows[0].returned_at is None
        assert ledger.key_state(key.id) == KeyState.ASSIGNED

    def test_second_assign_is_rejected(self, ledger, db_session, key, admin, alice, bob):
        ledger.assign(key.id, alice.id, admin.id)

        with pytest.raises(KeyAlreadyAssigned):
            ledger.assign(key.id, bob.id, admin.id)

        rows = _rows(db_session, key.id)
        assert len(rows) == 1
        assert rows[0].assigned_to == alice.id

    def test_index_rejects_insert_when_pre_check_is_bypassed(
        self, ledger, db_session, key, admin, alice, bob
    ):
        """Simulates losing the race: the read saw no holder, the insert must still fail."""
        ledger.assign(key.id, alice.id, admin.id)

        with patch.object(ledger.assignment_repo, "get_open_assignment", return_value=None):
            with pytest.raises(KeyAlreadyAssigned):
                ledger.assign(key.id, bob.id, admin.id)

        assert _open_count(db_session, key.id) == 1

    def test_missing_key(self, ledger, admin, alice):
        with pytest.raises(KeyNotFound):
            ledger.assign(999, alice.id, admin.id)

    def test_retired_key(self, ledger, db_session, key, admin, alice):
        KeyRepository(db_session).retire_key(key.id)

        with pytest.raises(KeyNotFound):
            ledger.assign(key.id, alice.id, admin.id)
        assert _rows(db_session, key.id) == []

    def test_key_retired_between_check_and_insert(
        self, ledger, db_session, session_factory, key, admin, alice
    ):
        """Retirement committed after the active-key check must still block the insert."""
        is_active_key = ledger.key_registry.is_active_key

        def check_then_retire(key_id):
            active = is_active_key(key_id)
            with session_factory() as other:
                KeyRepository(other).retire_key(key_id)
            return active

        with patch.object(ledger.key_registry, "is_active_key", side_effect=check_then_retire):
            with pytest.raises(KeyNotFound):
                ledger.assign(key.id, alice.id, admin.id)

        assert _rows(db_session, key.id) == []
        assert KeyRepository(db_session).get_key(key.id).is_active is False

    def test_storage_failure_leaves_no_row(self, ledger, db_session, key, admin, alice):
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with patch.object(db_session, "commit", side_effect=error):
            with pytest.raises(StorageFailure) as exc_info:
                ledger.assign(key.id, alice.id, admin.id)

        assert str(exc_info.value) == "Storage operation failed"
        assert _rows(db_session, key.id) == []

        assignment_id = ledger.assign(key.id, alice.id, admin.id)
        assert [r.id for r in _rows(db_session, key.id)] == [assignment_id]

    def test_unknown_holder(self, ledger, db_session, key, admin):
        with pytest.raises(InvalidHolder):
            ledger.assign(key.id, 999, admin.id)
        assert _rows(db_session, key.id) == []

    def test_inactive_holder(self, ledger, db_session, key, admin, alice):
        UserRepository(db_session).update_user(alice.id, is_active=False)

        with pytest.raises(InvalidHolder):
            ledger.assign(key.id, alice.id, admin.id)

    def test_unknown_actor(self, ledger, db_session, key, alice):
        with pytest.raises(InvalidActor):
            ledger.assign(key.id, alice.id, 999)
        assert _rows(db_session, key.id) == []


class TestReturn:
    def test_return_closes_open_assignment(self, ledger, db_session, key, admin, alice):
        assignment_id = ledger.assign(key.id, alice.id, admin.id)

        closed = ledger.return_key(key.id, admin.id)

        assert closed.id == assignment_id
        assert closed.returned_at is not None
        assert ledger.key_state(key.id) == KeyState.AVAILABLE

    def test_return_by_someone_other_than_holder_or_assigner(
        self, ledger, key, admin, alice, bob
    ):
        ledger.assign(key.id, alice.id, admin.id)

        assert ledger.return_key(key.id, bob.id) is not None

    def test_return_without_open_assignment_is_noop(
        self, ledger, db_session, key, admin, alice
    ):
        ledger.assign(key.id, alice.id, admin.id)
        ledger.return_key(key.id, admin.id)
        before = [r.to_dict() for r in _rows(db_session, key.id)]

        assert ledger.return_key(key.id, admin.id) is None

        assert [r.to_dict() for r in _rows(db_session, key.id)] == before

    def test_return_never_assigned_key(self, ledger, db_session, key, admin):
        assert ledger.return_key(key.id, admin.id) is None
        assert _rows(db_session, key.id) == []

    def test_strict_return_reports_missing_assignment(self, ledger, key, admin):
        with pytest.raises(NoOpenAssignment):
            ledger.return_key(key.id, admin.id, strict=True)

    def test_no_op_return_is_logged(self, ledger, key, admin, caplog):
        with caplog.at_level("WARNING", logger="keyledger"):
            ledger.return_key(key.id, admin.id)

        assert "had no open assignment" in caplog.text

    def test_return_leaves_key_active(self, ledger, db_session, key, admin, alice):
        ledger.assign(key.id, alice.id, admin.id)
        ledger.return_key(key.id, admin.id)

        db_session.expire_all()
        assert KeyRepository(db_session).get_key(key.id).is_active is True


class TestCycle:
    def test_assign_return_assign(self, ledger, db_session, key, admin, alice, bob):
        first = ledger.assign(key.id, alice.id, admin.id)
        ledger.return_key(key.id, admin.id)
        second = ledger.assign(key.id, bob.id, admin.id)

        rows = _rows(db_session, key.id)
        assert [r.id for r in rows] == [first, second]
        assert rows[0].returned_at is not None
        assert rows[1].returned_at is None

    def test_history_is_newest_first(self, ledger, key, admin, alice, bob):
        first = ledger.assign(key.id, alice.id, admin.id)
        ledger.return_key(key.id, admin.id)
        second = ledger.assign(key.id, bob.id, admin.id)

        history = ledger.history(key.id)

        assert [h.id for h in history] == [second, first]
        assert history[0].returned_at is None
        assert history[0].assigned_to_display == "bob@example.com"
        assert history[0].assigned_by_display == "admin@example.com"
        assert history[1].returned_at is not None
        assert history[1].assigned_to_display == "alice@example.com"

    def test_history_ties_fall_back_to_insertion_order(
        self, db_session, key, admin, alice, bob
    ):
        frozen = datetime(2024, 1, 1, 12, 0, 0)
        ledger = AssignmentLedger(db_session, clock=lambda: frozen)

        first = ledger.assign(key.id, alice.id, admin.id)
        ledger.return_key(key.id, admin.id)
        second = ledger.assign(key.id, bob.id, admin.id)

        history = ledger.history(key.id)
        assert [h.id for h in history] == [second, first]
        assert {h.assigned_at for h in history} == {frozen}

    def test_history_is_repeatable(self, ledger, key, admin, alice):
        ledger.assign(key.id, alice.id, admin.id)

        assert ledger.history(key.id) == ledger.history(key.id)

    def test_history_of_unknown_key_is_empty(self, ledger):
        assert ledger.history(12345) == []

    def test_worked_example(self, ledger, db_session, admin, alice, bob):
        key = KeyRepository(db_session).create_key("K-100")

        assignment_id = ledger.assign(key.id, alice.id, admin.id)
        with pytest.raises(KeyAlreadyAssigned):
            ledger.assign(key.id, bob.id, admin.id)
        ledger.return_key(key.id, admin.id)

        history = ledger.history(key.id)
        assert len(history) == 1
        assert history[0].id == assignment_id
        assert history[0].assigned_to == alice.id
        assert history[0].returned_at is not None


class TestListActiveKeys:
    def test_states(self, ledger, db_session, admin, alice):
        keys = KeyRepository(db_session)
        out = keys.create_key("K-1")
        available = keys.create_key("K-2")
        retired = keys.create_key("K-3")
        keys.retire_key(retired.id)
        assignment_id = ledger.assign(out.id, alice.id, admin.id)

        listed = {k.identifier: k for k in ledger.list_active_keys()}

        assert set(listed) == {"K-1", "K-2"}
        assert listed["K-1"].state == KeyState.ASSIGNED
        assert listed["K-1"].current_assignment_id == assignment_id
        assert listed["K-1"].current_holder_id == alice.id
        assert listed["K-2"].state == KeyState.AVAILABLE
        assert listed["K-2"].current_holder_id is None
        assert available.id == listed["K-2"].id
