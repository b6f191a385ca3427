"""Tests for database session helpers."""

import pytest

from library_circulation_mcp.database.errors import DuplicateError, StoreError
from library_circulation_mcp.database.schema import Borrower, Loan
from library_circulation_mcp.database.session import safe_commit

from .conftest import TENANT


def test_verify_connection(db_manager):
    assert db_manager.verify_connection() is True


def test_duplicate_key_raises_duplicate_error(test_session, borrowers):
    test_session.expunge_all()
    test_session.add(Borrower(id="student_001", tenant_id=TENANT, is_active=True))

    with pytest.raises(DuplicateError, match="add borrower"):
        safe_commit(test_session, "add borrower")

    assert test_session.get(Borrower, "student_001").name == "Ada"


def test_other_integrity_failures_raise_store_error(test_session, clock):
    test_session.add(
        Loan(
            copy_id="no-such-copy",
            borrower_id="student_001",
            tenant_id=TENANT,
            issue_date=clock.now,
            due_date=clock.now,
        )
    )

    with pytest.raises(StoreError) as excinfo:
        safe_commit(test_session, "add loan")

    assert not isinstance(excinfo.value, DuplicateError)
