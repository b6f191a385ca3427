"""
Dashboard aggregates for the Library Circulation MCP Server.

Numbers only: rendering is left to whoever calls the ``library_stats`` and
``fine_stats`` tools.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from ..fines import days_late
from ..models.stats import FineEntry, FineStats, LibraryStats, OverdueLoanEntry, RecentLoan
from .schema import OUTSTANDING_LOAN_STATUSES, CopyStatusEnum, LoanStatusEnum
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Fine as FineDB
from .schema import Loan as LoanDB
from .session import safe_query

logger = logging.getLogger(__name__)

RECENT_LOANS_LIMIT = 5
OVERDUE_LIST_LIMIT = 5
RECENT_FINES_LIMIT = 20


class StatsRepository:
    """Read-only aggregates over one tenant's circulation data."""

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.tenant_id = tenant_id
        self.clock = clock

    def _scalar(self, query, error_msg: str):
        return safe_query(self.session, lambda s: s.execute(query).scalar(), error_msg)

    def _loan_titles(self):
        """Loans joined to their book title, tenant-scoped."""
        return (
            select(LoanDB, BookDB.title)
            .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
            .join(BookDB, BookCopyDB.book_id == BookDB.id)
            .where(LoanDB.tenant_id == self.tenant_id)
        )

    def get_library_stats(self) -> LibraryStats:
        now = self.clock()

        total_books = self._scalar(
            select(func.count()).select_from(BookDB).where(BookDB.tenant_id == self.tenant_id),
            "Failed to count books",
        )

        copy_rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB.status, func.count())
                .where(BookCopyDB.tenant_id == self.tenant_id)
                .group_by(BookCopyDB.status)
            ).all(),
            "Failed to count copies",
        )
        by_status = {CopyStatusEnum(status): count for status, count in copy_rows}

        loan_rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB.status, func.count())
                .where(LoanDB.tenant_id == self.tenant_id)
                .group_by(LoanDB.status)
            ).all(),
            "Failed to count loans",
        )
        loans_by_status = {LoanStatusEnum(status): count for status, count in loan_rows}

        fine_rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB.paid, func.coalesce(func.sum(FineDB.amount), 0.0))
                .where(FineDB.tenant_id == self.tenant_id)
                .group_by(FineDB.paid)
            ).all(),
            "Failed to sum fines",
        )
        fines_by_paid = {bool(paid): float(total) for paid, total in fine_rows}

        recent = safe_query(
            self.session,
            lambda s: s.execute(
                self._loan_titles().order_by(desc(LoanDB.issue_date)).limit(RECENT_LOANS_LIMIT)
            ).all(),
            "Failed to get recent loans",
        )
        overdue = safe_query(
            self.session,
            lambda s: s.execute(
                self._loan_titles()
                .where(LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES), LoanDB.due_date < now)
                .order_by(LoanDB.due_date)
                .limit(OVERDUE_LIST_LIMIT)
            ).all(),
            "Failed to get overdue loans",
        )
        overdue_count = self._scalar(
            select(func.count())
            .select_from(LoanDB)
            .where(
                LoanDB.tenant_id == self.tenant_id,
                LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
                LoanDB.due_date < now,
            ),
            "Failed to count overdue loans",
        )

        return LibraryStats(
            total_books=total_books or 0,
            total_copies=sum(by_status.values()),
            available_copies=by_status.get(CopyStatusEnum.AVAILABLE, 0),
            issued_copies=by_status.get(CopyStatusEnum.ISSUED, 0),
            lost_copies=by_status.get(CopyStatusEnum.LOST, 0),
            active_loans=loans_by_status.get(LoanStatusEnum.ACTIVE, 0)
            + loans_by_status.get(LoanStatusEnum.OVERDUE, 0),
            overdue_loans=overdue_count or 0,
            total_fines_collected=round(fines_by_paid.get(True, 0.0), 2),
            pending_fines=round(fines_by_paid.get(False, 0.0), 2),
            recent_loans=[
                RecentLoan(
                    id=loan.id,
                    book_title=title,
                    issue_date=loan.issue_date,
                    due_date=loan.due_date,
                    status=LoanStatusEnum(loan.status).value,
                )
                for loan, title in recent
            ],
            overdue_list=[
                OverdueLoanEntry(
                    id=loan.id,
                    book_title=title,
                    borrower_id=loan.borrower_id,
                    due_date=loan.due_date,
                    days_overdue=days_late(loan.due_date, now),
                )
                for loan, title in overdue
            ],
        )

    def get_fine_stats(self) -> FineStats:
        """
        Overdue fines come from Fine rows; condition fines come from
        ``collected_amount`` on returned loans and are always paid.
        """
        fine_rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB, BookDB.title)
                .join(LoanDB, FineDB.loan_id == LoanDB.id)
                .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
                .join(BookDB, BookCopyDB.book_id == BookDB.id)
                .where(FineDB.tenant_id == self.tenant_id)
                .order_by(desc(FineDB.created_at))
            ).all(),
            "Failed to get fines",
        )
        condition_rows = safe_query(
            self.session,
            lambda s: s.execute(
                self._loan_titles()
                .where(LoanDB.status == LoanStatusEnum.RETURNED, LoanDB.collected_amount > 0)
                .order_by(desc(LoanDB.return_date))
            ).all(),
            "Failed to get condition fines",
        )

        unpaid = sum(fine.amount for fine, _ in fine_rows if not fine.paid)
        paid = sum(fine.amount for fine, _ in fine_rows if fine.paid)
        condition_total = sum(loan.collected_amount for loan, _ in condition_rows)

        entries = [
            FineEntry(
                id=fine.id,
                borrower_id=fine.borrower_id,
                book_title=title,
                amount=fine.amount,
                type="overdue",
                paid=fine.paid,
                created_at=fine.created_at,
            )
            for fine, title in fine_rows
        ] + [
            FineEntry(
                id=loan.id,
                borrower_id=loan.borrower_id,
                book_title=title,
                amount=loan.collected_amount,
                type="condition",
                paid=True,
                created_at=loan.return_date or loan.updated_at,
            )
            for loan, title in condition_rows
        ]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)

        return FineStats(
            total_overdue_fines=round(unpaid + paid, 2),
            unpaid_overdue_fines=round(unpaid, 2),
            paid_overdue_fines=round(paid, 2),
            total_condition_fines=round(condition_total, 2),
            overdue_fines_count=len(fine_rows),
            recent_fines=entries[:RECENT_FINES_LIMIT],
        )
