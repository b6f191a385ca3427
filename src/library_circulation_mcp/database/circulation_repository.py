"""
Circulation repository implementation for the Library Circulation MCP Server.

This repository is the loan state machine:

1. **Issue**: Available copy -> Issued, new Active loan
2. **Return**: Issued -> Available, loan Returned, overdue fine recorded
3. **Lost**: Issued -> Lost, loan Lost, replacement charge recorded
4. **Fines**: unpaid charge listing and payment
5. **Overdue sweep**: tag outstanding loans past their due date
6. **Repair scan**: find and fix loans, copies and counts that disagree

Each state-changing operation is one unit of work: the loan write, the copy
status write, the count recomputation and any fine row commit together or
not at all. Transitions are guarded by conditional updates
(``UPDATE ... WHERE status = <expected>``) so two concurrent requests for the
same copy or loan cannot both succeed.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta

from pydantic import BaseModel, Field
from sqlalchemy import and_, desc, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from ..config import get_config
from ..fines import days_late, format_amount, lost_cost, overdue_fine
from ..models.circulation import Fine as FineModel
from ..models.circulation import (
    IssueResult,
    LoanDetail,
    LostResult,
    OverdueSweepResult,
    ReturnResult,
)
from ..models.circulation import Loan as LoanModel
from ..models.stats import CountMismatch, InconsistencyReport
from ..observability import trace_operation
from .directory import BorrowerDirectory, BorrowerLookup, PolicyLookup, PolicyStore
from .errors import ConflictError, NotFoundError, PolicyError, ValidationError
from .inventory_repository import BookRepository
from .repository import PaginatedResponse, PaginationParams
from .schema import OUTSTANDING_LOAN_STATUSES, CopyStatusEnum, LoanStatusEnum
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Fine as FineDB
from .schema import Loan as LoanDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class IssueRequestSchema(BaseModel):
    """Schema for issuing a copy."""

    copy_id: str
    borrower_id: str
    due_date: datetime | date | None = None  # If not provided, use the tenant's loan duration
    notes: str | None = Field(None, max_length=1000)


class LoanFilterParams(BaseModel):
    """Filters for loan listings."""

    status: LoanStatusEnum | None = None
    borrower_id: str | None = None
    search: str | None = None  # Matches book title or accession number


class CirculationRepository:
    """
    Repository for circulation operations.

    Borrower and policy lookups go through the directory adapters so a
    different roster or settings service can be supplied. ``clock`` returns
    the current time and exists so callers can pin "now".
    """

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        *,
        borrowers: BorrowerLookup | None = None,
        policies: PolicyLookup | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.tenant_id = tenant_id
        self.books = BookRepository(session, tenant_id)
        self.borrowers = borrowers or BorrowerDirectory(session, tenant_id)
        self.policies = policies or PolicyStore(session)
        self.clock = clock

    @contextmanager
    def _unit_of_work(self, operation: str) -> Generator[None, None, None]:
        """Commit everything done inside the block once, or roll it all back."""
        try:
            yield
            safe_commit(self.session, operation)
            self.session.expire_all()
        except Exception:
            self.session.rollback()
            raise

    # ==================== LOOKUPS ====================

    def _outstanding_filter(self, borrower_id: str):
        return and_(
            LoanDB.tenant_id == self.tenant_id,
            LoanDB.borrower_id == borrower_id,
            LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
        )

    def _require_loan(self, loan_id: str) -> LoanDB:
        loan = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB)
                .where(LoanDB.id == loan_id, LoanDB.tenant_id == self.tenant_id)
                .options(joinedload(LoanDB.copy))
            )
            .unique()
            .scalar_one_or_none(),
            "Failed to get loan",
        )
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def _loans(self, *criteria, newest_first: bool = True) -> list[LoanModel]:
        query = select(LoanDB).where(LoanDB.tenant_id == self.tenant_id, *criteria)
        query = query.order_by(desc(LoanDB.issue_date) if newest_first else LoanDB.due_date)
        loans = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get loans"
        )
        return [LoanModel.model_validate(loan, from_attributes=True) for loan in loans]

    def get_loan(self, loan_id: str) -> LoanModel:
        return LoanModel.model_validate(self._require_loan(loan_id), from_attributes=True)

    def get_active_loans(self, borrower_id: str) -> list[LoanModel]:
        """Outstanding (active or overdue-tagged) loans of a borrower, newest first."""
        return self._loans(self._outstanding_filter(borrower_id))

    def get_overdue_loans(self, borrower_id: str) -> list[LoanModel]:
        """Outstanding loans whose due date has passed, oldest due first."""
        return self._loans(
            self._outstanding_filter(borrower_id),
            LoanDB.due_date < self.clock(),
            newest_first=False,
        )

    def get_loan_history(self, borrower_id: str) -> list[LoanModel]:
        return self._loans(LoanDB.borrower_id == borrower_id)

    def count_active_loans(self, borrower_id: str) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(LoanDB)
                .where(self._outstanding_filter(borrower_id))
            ).scalar(),
            "Failed to count active loans",
        )

    def get_unpaid_fines(self, borrower_id: str) -> list[FineModel]:
        fines = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB)
                .where(
                    FineDB.tenant_id == self.tenant_id,
                    FineDB.borrower_id == borrower_id,
                    FineDB.paid.is_(False),
                )
                .order_by(FineDB.created_at)
            )
            .scalars()
            .all(),
            "Failed to get unpaid fines",
        )
        return [FineModel.model_validate(f, from_attributes=True) for f in fines]

    def unpaid_fine_total(self, borrower_id: str) -> float:
        total = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.coalesce(func.sum(FineDB.amount), 0.0)).where(
                    FineDB.tenant_id == self.tenant_id,
                    FineDB.borrower_id == borrower_id,
                    FineDB.paid.is_(False),
                )
            ).scalar(),
            "Failed to sum unpaid fines",
        )
        return round(float(total or 0.0), 2)

    def list_loans(
        self,
        filters: LoanFilterParams | None = None,
        pagination: PaginationParams | None = None,
    ) -> list[LoanDetail] | PaginatedResponse[LoanDetail]:
        """Loans of the tenant joined with copy and title, newest first."""
        filters = filters or LoanFilterParams()
        query = (
            select(LoanDB, BookCopyDB.accession_number, BookCopyDB.price, BookDB.id, BookDB.title)
            .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
            .join(BookDB, BookCopyDB.book_id == BookDB.id)
            .where(LoanDB.tenant_id == self.tenant_id)
        )
        if filters.status is not None:
            query = query.where(LoanDB.status == filters.status)
        if filters.borrower_id:
            query = query.where(LoanDB.borrower_id == filters.borrower_id)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            query = query.where(
                or_(
                    func.lower(BookDB.title).like(pattern),
                    func.lower(BookCopyDB.accession_number).like(pattern),
                )
            )
        query = query.order_by(desc(LoanDB.issue_date))

        total = None
        if pagination:
            pagination.validate_params()
            count_query = select(func.count()).select_from(query.order_by(None).subquery())
            total = safe_query(
                self.session, lambda s: s.execute(count_query).scalar(), "Failed to count loans"
            )
            query = query.offset(pagination.offset).limit(pagination.page_size)

        rows = safe_query(self.session, lambda s: s.execute(query).all(), "Failed to list loans")
        items = [
            LoanDetail.model_validate(
                {
                    **LoanModel.model_validate(loan, from_attributes=True).model_dump(),
                    "accession_number": accession_number,
                    "copy_price": price,
                    "book_id": book_id,
                    "book_title": title,
                }
            )
            for loan, accession_number, price, book_id, title in rows
        ]

        if pagination is None:
            return items
        return PaginatedResponse(
            items=items,
            total=total or 0,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=((total or 0) + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < (total or 0),
            has_previous=pagination.page > 1,
        )

    # ==================== ISSUE ====================

    def _resolve_due_date(self, request: IssueRequestSchema, issued_at: datetime) -> datetime:
        if request.due_date is None:
            policy = self.policies.get_policy(self.tenant_id)
            return issued_at + timedelta(days=policy.loan_duration_days)

        due = request.due_date
        if not isinstance(due, datetime):
            due = datetime.combine(due, time.min)
        elif due.tzinfo is not None:
            # Stored dates are naive local time
            due = due.astimezone().replace(tzinfo=None)
        if due <= issued_at:
            raise ValidationError("Due date must be after the issue date")
        return due

    @trace_operation("issue_book")
    def issue_book(self, request: IssueRequestSchema) -> IssueResult:
        """
        Lend an available copy to a borrower.

        Checks run in order and none of them writes anything: copy exists and
        is available, borrower exists and is active, borrower has nothing
        overdue, borrower is under the tenant's loan limit. The copy is then
        claimed with a conditional update, so of two concurrent requests for
        the same copy exactly one gets it.

        Unpaid fines do not block issuing; they come back as ``warning``.

        Raises:
            NotFoundError: If the copy or borrower does not exist
            ConflictError: If the copy is not available (including losing a race)
            PolicyError: If the borrower is inactive, has overdue loans or is at the limit
            ValidationError: If an explicit due date is not after now
        """
        copy = self.books._require_copy(request.copy_id)
        if copy.status != CopyStatusEnum.AVAILABLE:
            raise ConflictError(
                f"Book copy is not available. Current status: {CopyStatusEnum(copy.status).value}"
            )

        borrower = self.borrowers.get_borrower(request.borrower_id)
        if borrower is None:
            raise NotFoundError(f"Borrower {request.borrower_id} not found")
        if not borrower.is_active:
            raise PolicyError("Borrower account is inactive. Cannot issue books.")

        if self.get_overdue_loans(request.borrower_id):
            raise PolicyError(
                "Borrower has overdue books. Please return them before issuing new books."
            )

        policy = self.policies.get_policy(self.tenant_id)
        active_count = self.count_active_loans(request.borrower_id)
        if active_count >= policy.max_books_per_student:
            raise PolicyError(
                f"Borrower has reached maximum book limit ({policy.max_books_per_student} books)"
            )

        unpaid_total = self.unpaid_fine_total(request.borrower_id)

        issued_at = self.clock()
        due_date = self._resolve_due_date(request, issued_at)

        with self._unit_of_work("issue book"):
            claimed = self.session.execute(
                update(BookCopyDB)
                .where(
                    BookCopyDB.id == request.copy_id,
                    BookCopyDB.tenant_id == self.tenant_id,
                    BookCopyDB.status == CopyStatusEnum.AVAILABLE,
                )
                .values(status=CopyStatusEnum.ISSUED)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                logger.warning(
                    "Copy %s was claimed by a concurrent request", request.copy_id
                )
                raise ConflictError("Book copy is not available. It was issued concurrently.")

            loan = LoanDB(
                copy_id=request.copy_id,
                borrower_id=request.borrower_id,
                tenant_id=self.tenant_id,
                issue_date=issued_at,
                due_date=due_date,
                status=LoanStatusEnum.ACTIVE,
                fine_amount=0.0,
                fine_paid=False,
                collected_amount=0.0,
                notes=request.notes,
            )
            self.session.add(loan)
            self.books.recompute_counts(copy.book_id)

        self.session.refresh(copy)
        logger.info(
            "Issued copy %s to borrower %s (loan %s, due %s)",
            request.copy_id,
            request.borrower_id,
            loan.id,
            due_date.isoformat(),
        )

        warning = None
        if unpaid_total > 0:
            warning = f"Borrower has {format_amount(unpaid_total)} in unpaid fines"

        return IssueResult(
            loan=LoanModel.model_validate(loan, from_attributes=True), warning=warning
        )

    # ==================== RETURN ====================

    @trace_operation("return_book")
    def return_book(self, loan_id: str, collected_amount: float | None = None) -> ReturnResult:
        """
        Take a copy back and settle the loan.

        Two independent charges can arise:
        - the overdue fine, ``ceil(days late) * fine_per_day``, recorded on the
          loan and as an unpaid Fine row;
        - ``collected_amount``, a condition/damage charge paid at the desk,
          recorded on the loan only.

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If the loan is already returned or was marked lost
        """
        loan = self._require_loan(loan_id)
        if loan.status == LoanStatusEnum.RETURNED:
            raise ConflictError("Book has already been returned")
        if loan.status == LoanStatusEnum.LOST:
            raise ConflictError("Book has been marked as lost and cannot be returned")

        returned_at = self.clock()
        late = days_late(loan.due_date, returned_at)
        fine = 0.0
        if late > 0:
            policy = self.policies.get_policy(self.tenant_id)
            fine = overdue_fine(loan.due_date, returned_at, policy.fine_per_day)

        collected = collected_amount if collected_amount and collected_amount > 0 else 0.0

        with self._unit_of_work("return book"):
            settled = self.session.execute(
                update(LoanDB)
                .where(
                    LoanDB.id == loan_id,
                    LoanDB.tenant_id == self.tenant_id,
                    LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
                )
                .values(
                    return_date=returned_at,
                    status=LoanStatusEnum.RETURNED,
                    fine_amount=fine,
                    collected_amount=collected,
                )
                .execution_options(synchronize_session=False)
            )
            if settled.rowcount != 1:
                raise ConflictError("Book has already been returned")

            self.session.execute(
                update(BookCopyDB)
                .where(BookCopyDB.id == loan.copy_id, BookCopyDB.tenant_id == self.tenant_id)
                .values(status=CopyStatusEnum.AVAILABLE)
                .execution_options(synchronize_session=False)
            )
            self.books.recompute_counts(loan.copy.book_id)

            if fine > 0:
                self.session.add(
                    FineDB(
                        loan_id=loan_id,
                        borrower_id=loan.borrower_id,
                        tenant_id=self.tenant_id,
                        amount=fine,
                        paid=False,
                        reason=f"Late return - {late} days overdue",
                        created_at=returned_at,
                    )
                )

        self.session.refresh(loan)
        logger.info(
            "Returned loan %s (%d days late, fine %s, collected %s)",
            loan_id,
            late,
            format_amount(fine),
            format_amount(collected),
        )
        return ReturnResult(
            loan=LoanModel.model_validate(loan, from_attributes=True),
            fine=fine,
            days_late=late,
            collected=collected > 0,
        )

    # ==================== LOST ====================

    @trace_operation("mark_book_lost")
    def mark_book_lost(self, loan_id: str, processing_fee: float | None = None) -> LostResult:
        """
        Retire the copy of an outstanding loan and charge its replacement.

        The charge is the copy price (0 when unknown) plus ``processing_fee``
        (configured default when omitted).

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If the loan is already lost or was returned
            ValidationError: If the processing fee is negative
        """
        if processing_fee is None:
            processing_fee = get_config().default_processing_fee
        if processing_fee < 0:
            raise ValidationError("Processing fee cannot be negative")

        loan = self._require_loan(loan_id)
        if loan.status == LoanStatusEnum.LOST:
            raise ConflictError("Book is already marked as lost")
        if loan.status == LoanStatusEnum.RETURNED:
            raise ConflictError("Book has already been returned and cannot be marked lost")

        book_price = loan.copy.price or 0.0
        total_cost = lost_cost(book_price, processing_fee)

        with self._unit_of_work("mark book lost"):
            marked = self.session.execute(
                update(LoanDB)
                .where(
                    LoanDB.id == loan_id,
                    LoanDB.tenant_id == self.tenant_id,
                    LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
                )
                .values(status=LoanStatusEnum.LOST, fine_amount=total_cost, fine_paid=False)
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount != 1:
                raise ConflictError("Book is already marked as lost")

            self.session.execute(
                update(BookCopyDB)
                .where(BookCopyDB.id == loan.copy_id, BookCopyDB.tenant_id == self.tenant_id)
                .values(status=CopyStatusEnum.LOST)
                .execution_options(synchronize_session=False)
            )
            self.books.recompute_counts(loan.copy.book_id)

            if total_cost > 0:
                self.session.add(
                    FineDB(
                        loan_id=loan_id,
                        borrower_id=loan.borrower_id,
                        tenant_id=self.tenant_id,
                        amount=total_cost,
                        paid=False,
                        reason=(
                            f"Lost book - Book price: {format_amount(book_price)}, "
                            f"Processing fee: {format_amount(processing_fee)}"
                        ),
                        created_at=self.clock(),
                    )
                )

        self.session.refresh(loan)
        logger.info(
            "Marked loan %s lost, charged %s to borrower %s",
            loan_id,
            format_amount(total_cost),
            loan.borrower_id,
        )
        return LostResult(
            loan=LoanModel.model_validate(loan, from_attributes=True),
            total_cost=total_cost,
            book_price=book_price,
            processing_fee=processing_fee,
        )

    # ==================== FINES ====================

    @trace_operation("pay_fine")
    def pay_fine(self, fine_id: str) -> FineModel:
        """
        Mark a fine paid. When no unpaid fines remain on its loan, the loan's
        ``fine_paid`` flag is set too.

        Raises:
            NotFoundError: If the fine does not exist
            ConflictError: If the fine is already paid
        """
        fine = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB).where(FineDB.id == fine_id, FineDB.tenant_id == self.tenant_id)
            ).scalar_one_or_none(),
            "Failed to get fine",
        )
        if fine is None:
            raise NotFoundError(f"Fine {fine_id} not found")
        if fine.paid:
            raise ConflictError("Fine has already been paid")

        paid_at = self.clock()
        with self._unit_of_work("pay fine"):
            paid = self.session.execute(
                update(FineDB)
                .where(FineDB.id == fine_id, FineDB.paid.is_(False))
                .values(paid=True, paid_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            if paid.rowcount != 1:
                raise ConflictError("Fine has already been paid")

            remaining = self.session.execute(
                select(func.count())
                .select_from(FineDB)
                .where(FineDB.loan_id == fine.loan_id, FineDB.paid.is_(False))
            ).scalar()
            if remaining == 0:
                self.session.execute(
                    update(LoanDB)
                    .where(LoanDB.id == fine.loan_id)
                    .values(fine_paid=True)
                    .execution_options(synchronize_session=False)
                )

        self.session.refresh(fine)
        logger.info("Fine %s paid (%s)", fine_id, format_amount(fine.amount))
        return FineModel.model_validate(fine, from_attributes=True)

    # ==================== OVERDUE SWEEP ====================

    @trace_operation("mark_overdue_loans")
    def mark_overdue_loans(self) -> OverdueSweepResult:
        """Tag every active loan past its due date as overdue."""
        now = self.clock()
        criteria = (
            LoanDB.tenant_id == self.tenant_id,
            LoanDB.status == LoanStatusEnum.ACTIVE,
            LoanDB.due_date < now,
        )
        borrowers = safe_query(
            self.session,
            lambda s: s.execute(select(LoanDB.borrower_id).where(*criteria).distinct())
            .scalars()
            .all(),
            "Failed to find overdue loans",
        )
        with self._unit_of_work("mark overdue loans"):
            result = self.session.execute(
                update(LoanDB)
                .where(*criteria)
                .values(status=LoanStatusEnum.OVERDUE)
                .execution_options(synchronize_session=False)
            )

        logger.info("Tagged %d loans overdue for tenant %s", result.rowcount, self.tenant_id)
        return OverdueSweepResult(
            updated_count=result.rowcount, affected_borrowers=sorted(borrowers)
        )

    # ==================== REPAIR SCAN ====================

    def scan_inconsistencies(self) -> InconsistencyReport:
        """
        Report disagreements between loans, copies and cached counts.

        Rows written by this repository cannot disagree, since every
        transition commits as one unit; the scan exists for data written by
        other tools or imported from elsewhere.
        """
        orphaned = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB.id)
                .join(BookCopyDB, LoanDB.copy_id == BookCopyDB.id)
                .where(
                    LoanDB.tenant_id == self.tenant_id,
                    LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
                    BookCopyDB.status != CopyStatusEnum.ISSUED,
                )
                .order_by(LoanDB.id)
            )
            .scalars()
            .all(),
            "Failed to scan loans",
        )

        outstanding_copy_ids = (
            select(LoanDB.copy_id)
            .where(
                LoanDB.tenant_id == self.tenant_id,
                LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
            )
        )
        stranded = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB.id)
                .where(
                    BookCopyDB.tenant_id == self.tenant_id,
                    BookCopyDB.status == CopyStatusEnum.ISSUED,
                    BookCopyDB.id.not_in(outstanding_copy_ids),
                )
                .order_by(BookCopyDB.id)
            )
            .scalars()
            .all(),
            "Failed to scan copies",
        )

        books = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB)
                .where(BookDB.tenant_id == self.tenant_id)
                .order_by(BookDB.id)
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all(),
            "Failed to scan books",
        )
        mismatches = []
        for book in books:
            total, available = self.books.count_copies_by_status(book.id)
            if (total, available) != (book.total_copies, book.available_copies):
                mismatches.append(
                    CountMismatch(
                        book_id=book.id,
                        cached_total=book.total_copies,
                        cached_available=book.available_copies,
                        actual_total=total,
                        actual_available=available,
                    )
                )

        report = InconsistencyReport(
            orphaned_loans=list(orphaned),
            stranded_copies=list(stranded),
            count_mismatches=mismatches,
        )
        if not report.is_consistent:
            logger.warning(
                "Tenant %s inconsistencies: %d orphaned loans, %d stranded copies, "
                "%d count mismatches",
                self.tenant_id,
                len(report.orphaned_loans),
                len(report.stranded_copies),
                len(report.count_mismatches),
            )
        return report

    @trace_operation("repair_inconsistencies")
    def repair_inconsistencies(self) -> InconsistencyReport:
        """
        Fix what ``scan_inconsistencies`` finds.

        The outstanding loan is taken as the source of truth: its copy is set
        back to issued. Issued copies with no outstanding loan become
        available. Counts of every touched book are then recomputed.
        """
        report = self.scan_inconsistencies()
        if report.is_consistent:
            return report

        with self._unit_of_work("repair inconsistencies"):
            book_ids = {m.book_id for m in report.count_mismatches}

            if report.orphaned_loans:
                copy_ids = select(LoanDB.copy_id).where(LoanDB.id.in_(report.orphaned_loans))
                book_ids.update(
                    self.session.execute(
                        select(BookCopyDB.book_id).where(BookCopyDB.id.in_(copy_ids))
                    ).scalars()
                )
                self.session.execute(
                    update(BookCopyDB)
                    .where(BookCopyDB.id.in_(copy_ids))
                    .values(status=CopyStatusEnum.ISSUED)
                    .execution_options(synchronize_session=False)
                )

            if report.stranded_copies:
                book_ids.update(
                    self.session.execute(
                        select(BookCopyDB.book_id).where(
                            BookCopyDB.id.in_(report.stranded_copies)
                        )
                    ).scalars()
                )
                self.session.execute(
                    update(BookCopyDB)
                    .where(BookCopyDB.id.in_(report.stranded_copies))
                    .values(status=CopyStatusEnum.AVAILABLE)
                    .execution_options(synchronize_session=False)
                )

            for book_id in sorted(book_ids):
                self.books.recompute_counts(book_id)

        logger.info("Repaired inconsistencies for tenant %s", self.tenant_id)
        return report.model_copy(update={"repaired": True})
