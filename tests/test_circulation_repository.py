"""
Tests for the circulation repository: issue, return, lost, fines, the overdue
sweep and the repair scan.
"""

import threading
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select, update

from library_circulation_mcp.database.circulation_repository import (
    CirculationRepository,
    IssueRequestSchema,
    LoanFilterParams,
)
from library_circulation_mcp.database.errors import (
    ConflictError,
    NotFoundError,
    PolicyError,
    ValidationError,
)
from library_circulation_mcp.database.repository import PaginationParams
from library_circulation_mcp.database.schema import Book as BookDB
from library_circulation_mcp.database.schema import BookCopy as BookCopyDB
from library_circulation_mcp.database.schema import CopyStatusEnum, LoanStatusEnum
from library_circulation_mcp.database.schema import Fine as FineDB

from .conftest import TENANT


def fines_for(session, loan_id: str) -> list[FineDB]:
    return session.execute(select(FineDB).where(FineDB.loan_id == loan_id)).scalars().all()


# =============================================================================
# ISSUE
# =============================================================================


class TestIssueBook:
    def test_issue_uses_policy_loan_duration(
        self, book_repo, circulation, stocked_book, borrowers, clock
    ):
        book, copies = stocked_book

        result = circulation.issue_book(
            IssueRequestSchema(copy_id=copies[0].id, borrower_id="student_001")
        )

        loan = result.loan
        assert loan.status == "active"
        assert loan.issue_date == clock.now
        assert loan.due_date == datetime(2024, 1, 24, 9, 0, 0)
        assert loan.fine_amount == 0
        assert loan.collected_amount == 0
        assert result.warning is None

        assert book_repo.get_copy(copies[0].id).status == "issued"
        refreshed = book_repo.get_book(book.id)
        assert refreshed.available_copies == 4
        assert refreshed.total_copies == 5

    def test_tenant_policy_overrides_duration(
        self, circulation, stocked_book, borrowers, set_policy
    ):
        _, copies = stocked_book
        set_policy(loan_duration_days=7)

        result = circulation.issue_book(
            IssueRequestSchema(copy_id=copies[0].id, borrower_id="student_001")
        )

        assert result.loan.due_date == datetime(2024, 1, 17, 9, 0, 0)

    def test_due_date_override(self, circulation, stocked_book, borrowers):
        _, copies = stocked_book

        result = circulation.issue_book(
            IssueRequestSchema(
                copy_id=copies[0].id,
                borrower_id="student_001",
                due_date=date(2024, 2, 1),
                notes="Holiday reading",
            )
        )

        assert result.loan.due_date == datetime(2024, 2, 1)
        assert result.loan.notes == "Holiday reading"

    def test_offset_due_date_is_stored_as_local_time(self, circulation, stocked_book, borrowers):
        _, copies = stocked_book
        due = datetime(2024, 2, 1, 12, 0, 0, tzinfo=timezone.utc)

        result = circulation.issue_book(
            IssueRequestSchema(copy_id=copies[0].id, borrower_id="student_001", due_date=due)
        )

        assert result.loan.due_date == due.astimezone().replace(tzinfo=None)

    def test_due_date_must_follow_issue_date(self, circulation, stocked_book, borrowers):
        _, copies = stocked_book

        with pytest.raises(ValidationError):
            circulation.issue_book(
                IssueRequestSchema(
                    copy_id=copies[0].id, borrower_id="student_001", due_date=date(2024, 1, 1)
                )
            )

    def test_missing_copy(self, circulation, borrowers):
        with pytest.raises(NotFoundError):
            circulation.issue_book(IssueRequestSchema(copy_id="nope", borrower_id="student_001"))

    def test_copy_not_available(self, book_repo, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        issue(copies[0].id)

        with pytest.raises(ConflictError, match="not available. Current status: issued"):
            issue(copies[0].id, borrower_id="student_002")

    def test_missing_borrower(self, circulation, stocked_book, borrowers):
        _, copies = stocked_book

        with pytest.raises(NotFoundError):
            circulation.issue_book(IssueRequestSchema(copy_id=copies[0].id, borrower_id="ghost"))

    def test_borrower_of_other_tenant_is_unknown(self, circulation, stocked_book, borrowers):
        _, copies = stocked_book

        with pytest.raises(NotFoundError):
            circulation.issue_book(
                IssueRequestSchema(copy_id=copies[0].id, borrower_id="student_900")
            )

    def test_inactive_borrower(self, book_repo, circulation, stocked_book, borrowers):
        book, copies = stocked_book

        with pytest.raises(PolicyError, match="inactive"):
            circulation.issue_book(
                IssueRequestSchema(copy_id=copies[0].id, borrower_id="inactive_001")
            )

        assert book_repo.get_copy(copies[0].id).status == "available"
        assert book_repo.get_book(book.id).available_copies == 5

    def test_limit_reached(self, circulation, stocked_book, borrowers, set_policy, issue):
        _, copies = stocked_book
        set_policy(max_books_per_student=3)
        for copy in copies[:3]:
            issue(copy.id)

        with pytest.raises(PolicyError, match=r"maximum book limit \(3 books\)"):
            issue(copies[3].id)

        assert len(circulation.get_active_loans("student_001")) == 3

    def test_policy_limit_applies(self, circulation, stocked_book, borrowers, set_policy, issue):
        _, copies = stocked_book
        set_policy(max_books_per_student=1)
        issue(copies[0].id)

        with pytest.raises(PolicyError, match=r"\(1 books\)"):
            issue(copies[1].id)

    def test_overdue_loan_blocks_issue(self, circulation, stocked_book, borrowers, clock, issue):
        _, copies = stocked_book
        issue(copies[0].id)
        clock.advance(days=20)

        with pytest.raises(PolicyError, match="overdue"):
            issue(copies[1].id)

    def test_unpaid_fines_warn_but_do_not_block(
        self, circulation, stocked_book, borrowers, clock, issue
    ):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        clock.advance(days=17)
        circulation.return_book(loan.id)

        result = circulation.issue_book(
            IssueRequestSchema(copy_id=copies[1].id, borrower_id="student_001")
        )

        assert result.loan.status == "active"
        assert result.warning == "Borrower has $1.50 in unpaid fines"

    @pytest.mark.concurrency
    def test_concurrent_issue_of_same_copy(self, db_manager, stocked_book, borrowers, clock):
        _, copies = stocked_book
        barrier = threading.Barrier(2)
        outcomes: list[object] = []
        lock = threading.Lock()

        def attempt(borrower_id: str) -> None:
            session = db_manager.create_session()
            try:
                repo = CirculationRepository(session, TENANT, clock=clock)
                barrier.wait()
                result = repo.issue_book(
                    IssueRequestSchema(copy_id=copies[0].id, borrower_id=borrower_id)
                )
                outcome: object = result.loan.id
            except Exception as e:  # collected and asserted below
                outcome = e
            finally:
                session.close()
            with lock:
                outcomes.append(outcome)

        threads = [
            threading.Thread(target=attempt, args=(borrower,))
            for borrower in ("student_001", "student_002")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        successes = [o for o in outcomes if isinstance(o, str)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictError)

        with db_manager.session_scope() as session:
            repo = CirculationRepository(session, TENANT, clock=clock)
            loans = repo.list_loans(LoanFilterParams(status=LoanStatusEnum.ACTIVE))
            assert [loan.copy_id for loan in loans] == [copies[0].id]
            assert repo.scan_inconsistencies().is_consistent


# =============================================================================
# RETURN
# =============================================================================


class TestReturnBook:
    def test_on_time_return(self, book_repo, circulation, stocked_book, borrowers, clock, issue):
        book, copies = stocked_book
        loan = issue(copies[0].id)
        clock.advance(days=3)

        result = circulation.return_book(loan.id)

        assert result.fine == 0
        assert result.days_late == 0
        assert result.collected is False
        assert result.loan.status == "returned"
        assert result.loan.return_date == clock.now
        assert fines_for(circulation.session, loan.id) == []
        assert book_repo.get_copy(copies[0].id).status == "available"
        assert book_repo.get_book(book.id).available_copies == 5

    def test_late_return_with_condition_charge(
        self, circulation, stocked_book, borrowers, clock, set_policy, issue
    ):
        _, copies = stocked_book
        set_policy(fine_per_day=1.0)
        loan = issue(copies[0].id, due_date=date(2024, 2, 1))
        clock.now = datetime(2024, 2, 5)

        result = circulation.return_book(loan.id, collected_amount=10)

        assert result.days_late == 4
        assert result.fine == 4
        assert result.collected is True
        assert result.loan.fine_amount == 4
        assert result.loan.collected_amount == 10

        fines = fines_for(circulation.session, loan.id)
        assert len(fines) == 1
        assert fines[0].amount == 4
        assert fines[0].paid is False
        assert fines[0].reason == "Late return - 4 days overdue"

    def test_partial_day_counts_as_full_day(self, circulation, stocked_book, borrowers, clock, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        clock.now = datetime(2024, 1, 24, 9, 0, 1)

        result = circulation.return_book(loan.id)

        assert result.days_late == 1
        assert result.fine == 0.5

    def test_non_positive_collected_amount_is_ignored(
        self, circulation, stocked_book, borrowers, issue
    ):
        _, copies = stocked_book
        loan = issue(copies[0].id)

        result = circulation.return_book(loan.id, collected_amount=0)

        assert result.collected is False
        assert result.loan.collected_amount == 0

    def test_return_twice_conflicts(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        circulation.return_book(loan.id)

        with pytest.raises(ConflictError, match="already been returned"):
            circulation.return_book(loan.id)

    def test_return_of_lost_book_conflicts(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        circulation.mark_book_lost(loan.id)

        with pytest.raises(ConflictError, match="lost"):
            circulation.return_book(loan.id)

    def test_missing_loan(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.return_book("missing")

    def test_overdue_tagged_loan_can_be_returned(
        self, circulation, stocked_book, borrowers, clock, issue
    ):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        clock.advance(days=15)
        circulation.mark_overdue_loans()

        result = circulation.return_book(loan.id)

        assert result.loan.status == "returned"
        assert result.days_late == 1


# =============================================================================
# LOST
# =============================================================================


class TestMarkBookLost:
    def test_lost_charges_price_plus_fee(
        self, book_repo, circulation, stocked_book, borrowers, issue
    ):
        book, copies = stocked_book
        loan = issue(copies[0].id)

        result = circulation.mark_book_lost(loan.id)

        assert result.total_cost == 25.0
        assert result.book_price == 20.0
        assert result.processing_fee == 5.0
        assert result.loan.status == "lost"
        assert result.loan.fine_amount == 25.0
        assert result.loan.fine_paid is False

        fines = fines_for(circulation.session, loan.id)
        assert len(fines) == 1
        assert fines[0].amount == 25.0
        assert fines[0].reason == "Lost book - Book price: $20.00, Processing fee: $5.00"

        assert book_repo.get_copy(copies[0].id).status == "lost"
        refreshed = book_repo.get_book(book.id)
        assert refreshed.total_copies == 5
        assert refreshed.available_copies == 4

    def test_custom_fee_and_unknown_price(self, book_repo, circulation, borrowers, issue):
        from library_circulation_mcp.database.inventory_repository import (
            BookCreateSchema,
            CopyCreateSchema,
        )

        book = book_repo.create_book(BookCreateSchema(title="Donated", author="Anon"))
        copy = book_repo.create_copies(book.id, CopyCreateSchema(count=1))[0]
        loan = issue(copy.id)

        result = circulation.mark_book_lost(loan.id, processing_fee=2.5)

        assert result.total_cost == 2.5
        assert result.book_price == 0.0

    def test_lost_twice_conflicts(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        circulation.mark_book_lost(loan.id)

        with pytest.raises(ConflictError, match="already marked as lost"):
            circulation.mark_book_lost(loan.id)

    def test_lost_after_return_conflicts(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        circulation.return_book(loan.id)

        with pytest.raises(ConflictError, match="already been returned"):
            circulation.mark_book_lost(loan.id)

    def test_lost_copy_cannot_be_issued_again(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        circulation.mark_book_lost(loan.id)

        with pytest.raises(ConflictError, match="Current status: lost"):
            issue(copies[0].id, borrower_id="student_002")

    def test_negative_fee_rejected(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)

        with pytest.raises(ValidationError):
            circulation.mark_book_lost(loan.id, processing_fee=-1)


# =============================================================================
# FINES AND QUERIES
# =============================================================================


class TestFinesAndQueries:
    def test_pay_fine(self, circulation, stocked_book, borrowers, clock, issue):
        _, copies = stocked_book
        loan = issue(copies[0].id)
        clock.advance(days=16)
        circulation.return_book(loan.id)
        fine = circulation.get_unpaid_fines("student_001")[0]

        paid = circulation.pay_fine(fine.id)

        assert paid.paid is True
        assert paid.paid_at == clock.now
        assert circulation.get_unpaid_fines("student_001") == []
        assert circulation.get_loan(loan.id).fine_paid is True

        with pytest.raises(ConflictError, match="already been paid"):
            circulation.pay_fine(fine.id)

    def test_pay_missing_fine(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.pay_fine("missing")

    def test_loan_queries(self, circulation, stocked_book, borrowers, clock, issue):
        _, copies = stocked_book
        first = issue(copies[0].id)
        clock.advance(days=1)
        second = issue(copies[1].id, due_date=date(2024, 1, 12))
        clock.advance(days=2)

        assert [loan.id for loan in circulation.get_active_loans("student_001")] == [
            second.id,
            first.id,
        ]
        assert [loan.id for loan in circulation.get_overdue_loans("student_001")] == [second.id]

        circulation.return_book(first.id)
        history = circulation.get_loan_history("student_001")
        assert {loan.id for loan in history} == {first.id, second.id}
        assert [loan.id for loan in circulation.get_active_loans("student_001")] == [second.id]

    def test_list_loans_filters(self, circulation, book_repo, stocked_book, borrowers, issue):
        from library_circulation_mcp.database.inventory_repository import (
            BookCreateSchema,
            CopyCreateSchema,
        )

        _, hobbit_copies = stocked_book
        dune = book_repo.create_book(BookCreateSchema(title="Dune", author="Frank Herbert"))
        dune_copy = book_repo.create_copies(dune.id, CopyCreateSchema(count=1))[0]

        issue(hobbit_copies[0].id)
        returned = issue(dune_copy.id, borrower_id="student_002")
        circulation.return_book(returned.id)

        by_title = circulation.list_loans(LoanFilterParams(search="HOBBIT"))
        assert [loan.book_title for loan in by_title] == ["The Hobbit"]
        assert by_title[0].accession_number == "LIB-000001"
        assert by_title[0].copy_price == 20.0

        by_accession = circulation.list_loans(LoanFilterParams(search="lib-000006"))
        assert [loan.book_title for loan in by_accession] == ["Dune"]

        assert len(circulation.list_loans(LoanFilterParams(status=LoanStatusEnum.RETURNED))) == 1
        assert len(circulation.list_loans(LoanFilterParams(borrower_id="student_001"))) == 1

        page = circulation.list_loans(pagination=PaginationParams(page=1, page_size=1))
        assert page.total == 2
        assert page.has_next

    def test_mark_overdue_loans(self, circulation, stocked_book, borrowers, clock, issue):
        _, copies = stocked_book
        issue(copies[0].id)
        issue(copies[1].id, borrower_id="student_002", due_date=date(2024, 3, 1))
        clock.advance(days=15)

        result = circulation.mark_overdue_loans()

        assert result.updated_count == 1
        assert result.affected_borrowers == ["student_001"]
        assert circulation.list_loans(LoanFilterParams(status=LoanStatusEnum.OVERDUE))[
            0
        ].borrower_id == "student_001"
        assert circulation.mark_overdue_loans().updated_count == 0


# =============================================================================
# REPAIR SCAN
# =============================================================================


class TestRepairScan:
    def test_clean_data_is_consistent(self, circulation, stocked_book, borrowers, issue):
        _, copies = stocked_book
        issue(copies[0].id)

        report = circulation.scan_inconsistencies()

        assert report.is_consistent
        assert circulation.repair_inconsistencies().repaired is False

    def test_scan_and_repair(
        self, test_session, book_repo, circulation, stocked_book, borrowers, issue
    ):
        book, copies = stocked_book
        loan = issue(copies[0].id)

        # Simulate writes from another tool that bypassed the engine
        test_session.execute(
            update(BookCopyDB)
            .where(BookCopyDB.id == copies[0].id)
            .values(status=CopyStatusEnum.AVAILABLE)
        )
        test_session.execute(
            update(BookCopyDB)
            .where(BookCopyDB.id == copies[1].id)
            .values(status=CopyStatusEnum.ISSUED)
        )
        test_session.execute(update(BookDB).where(BookDB.id == book.id).values(total_copies=99))
        test_session.commit()

        report = circulation.scan_inconsistencies()
        assert report.orphaned_loans == [loan.id]
        assert report.stranded_copies == [copies[1].id]
        assert [m.book_id for m in report.count_mismatches] == [book.id]
        assert report.count_mismatches[0].cached_total == 99
        assert report.count_mismatches[0].actual_total == 5

        repaired = circulation.repair_inconsistencies()
        assert repaired.repaired is True

        assert circulation.scan_inconsistencies().is_consistent
        assert book_repo.get_copy(copies[0].id).status == "issued"
        assert book_repo.get_copy(copies[1].id).status == "available"
        refreshed = book_repo.get_book(book.id)
        assert refreshed.total_copies == 5
        assert refreshed.available_copies == 4
