"""
Borrowing eligibility for the Library Circulation MCP Server.

Two computations produce the same verdict:

- the aggregate path reads the borrower flag, loan counts and unpaid fine
  total in one statement;
- the fallback path recomputes the decision step by step through the
  borrower directory and plain queries. It runs whenever the aggregate
  statement fails, and next to it when paths are compared
  (``eligibility_compare_paths`` or a per-call switch).

Both limit outstanding loans to ``eligibility_max_books`` from configuration,
which is not the tenant policy value that ``issue_book`` enforces. When the
two numbers differ a warning is logged; the configured value stays the one
used here until one source is chosen.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import get_config
from ..fines import format_amount
from ..models.eligibility import EligibilityResult, EligibilitySource
from ..observability import trace_operation
from .directory import BorrowerDirectory, BorrowerLookup, PolicyLookup, PolicyStore
from .errors import StoreError
from .schema import OUTSTANDING_LOAN_STATUSES, LoanStatusEnum
from .schema import Borrower as BorrowerDB
from .schema import Fine as FineDB
from .schema import Loan as LoanDB
from .session import safe_query

logger = logging.getLogger(__name__)


class EligibilityRepository:
    """Answers "may this borrower take another book?"."""

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        *,
        borrowers: BorrowerLookup | None = None,
        policies: PolicyLookup | None = None,
        max_books: int | None = None,
        compare_paths: bool | None = None,
    ):
        self.session = session
        self.tenant_id = tenant_id
        self.borrowers = borrowers or BorrowerDirectory(session, tenant_id)
        self.policies = policies or PolicyStore(session)
        config = get_config()
        self.max_books = max_books or config.eligibility_max_books
        self.compare = config.eligibility_compare_paths if compare_paths is None else compare_paths

    def _warn_on_policy_mismatch(self) -> None:
        policy_max = self.policies.get_policy(self.tenant_id).max_books_per_student
        if policy_max != self.max_books:
            logger.warning(
                "Eligibility limit (%d) differs from tenant %s policy limit (%d); "
                "issue_book enforces the policy limit",
                self.max_books,
                self.tenant_id,
                policy_max,
            )

    # ==================== AGGREGATE PATH ====================

    def _loan_filter(self, borrower_id: str):
        return (LoanDB.tenant_id == self.tenant_id, LoanDB.borrower_id == borrower_id)

    def _aggregate_row(self, borrower_id: str):
        active = (
            select(func.count())
            .select_from(LoanDB)
            .where(*self._loan_filter(borrower_id), LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES))
            .scalar_subquery()
        )
        overdue = (
            select(func.count())
            .select_from(LoanDB)
            .where(*self._loan_filter(borrower_id), LoanDB.status == LoanStatusEnum.OVERDUE)
            .scalar_subquery()
        )
        unpaid = (
            select(func.coalesce(func.sum(FineDB.amount), 0.0))
            .where(
                FineDB.tenant_id == self.tenant_id,
                FineDB.borrower_id == borrower_id,
                FineDB.paid.is_(False),
            )
            .scalar_subquery()
        )
        query = select(
            BorrowerDB.is_active,
            active.label("active_loans"),
            overdue.label("overdue_loans"),
            unpaid.label("unpaid_fines"),
        ).where(BorrowerDB.id == borrower_id, BorrowerDB.tenant_id == self.tenant_id)
        return safe_query(
            self.session,
            lambda s: s.execute(query).one_or_none(),
            "Eligibility aggregate failed",
        )

    def check_aggregate(self, borrower_id: str) -> EligibilityResult:
        """
        Decide from one aggregate read.

        Overdue loans are reported before the limit, so a borrower who is
        both at the limit and overdue hears about the overdue books.
        """
        source = EligibilitySource.AGGREGATE
        row = self._aggregate_row(borrower_id)
        if row is None:
            return EligibilityResult(eligible=False, message="Borrower not found", source=source)
        if not row.is_active:
            return EligibilityResult(
                eligible=False, message="Borrower account is inactive", source=source
            )

        active = row.active_loans
        overdue = row.overdue_loans
        unpaid = round(float(row.unpaid_fines or 0.0), 2)

        if overdue > 0:
            return EligibilityResult(
                eligible=False,
                message=f"Borrower has {overdue} overdue book(s)",
                active_loans=active,
                overdue_loans=overdue,
                unpaid_fines=unpaid,
                source=source,
            )

        if active >= self.max_books:
            return EligibilityResult(
                eligible=False,
                message=f"Borrower has reached maximum loan limit ({self.max_books} books)",
                active_loans=active,
                max_books=self.max_books,
                unpaid_fines=unpaid,
                source=source,
            )

        warnings = [f"Outstanding fines: {format_amount(unpaid)}"] if unpaid > 0 else []
        return EligibilityResult(
            eligible=True,
            message="Borrower is eligible for book loans",
            active_loans=active,
            max_books=self.max_books,
            unpaid_fines=unpaid,
            warnings=warnings,
            source=source,
        )

    # ==================== FALLBACK PATH ====================

    def check_fallback(self, borrower_id: str) -> EligibilityResult:
        """Decide step by step: profile, limit, overdue tag, then fines as a warning."""
        source = EligibilitySource.FALLBACK
        borrower = self.borrowers.get_borrower(borrower_id)
        if borrower is None:
            return EligibilityResult(eligible=False, message="Borrower not found", source=source)
        if not borrower.is_active:
            return EligibilityResult(
                eligible=False, message="Borrower account is not active", source=source
            )

        statuses = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB.status).where(
                    *self._loan_filter(borrower_id),
                    LoanDB.status.in_(OUTSTANDING_LOAN_STATUSES),
                )
            )
            .scalars()
            .all(),
            "Failed to load outstanding loans",
        )
        active = len(statuses)
        overdue = sum(1 for status in statuses if status == LoanStatusEnum.OVERDUE)

        if active >= self.max_books:
            return EligibilityResult(
                eligible=False,
                message=f"Borrower has reached maximum loan limit ({self.max_books})",
                active_loans=active,
                max_books=self.max_books,
                warnings=[f"Currently has {active} active loans"],
                source=source,
            )

        if overdue > 0:
            return EligibilityResult(
                eligible=False,
                message="Borrower has overdue books",
                overdue_loans=overdue,
                warnings=[f"{overdue} overdue book(s) must be returned first"],
                source=source,
            )

        amounts = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB.amount).where(
                    FineDB.tenant_id == self.tenant_id,
                    FineDB.borrower_id == borrower_id,
                    FineDB.paid.is_(False),
                )
            )
            .scalars()
            .all(),
            "Failed to load unpaid fines",
        )
        unpaid = round(sum(amounts), 2)
        warnings = [f"Outstanding fines: {format_amount(unpaid)}"] if unpaid > 0 else []
        return EligibilityResult(
            eligible=True,
            message="Borrower is eligible for book loans",
            active_loans=active,
            max_books=self.max_books,
            unpaid_fines=unpaid,
            warnings=warnings,
            source=source,
        )

    # ==================== ENTRY POINTS ====================

    @trace_operation("check_eligibility")
    def check_eligibility(self, borrower_id: str) -> EligibilityResult:
        """
        Aggregate verdict, or the fallback verdict when the aggregate read fails.

        When comparing paths the fallback also runs next to a successful
        aggregate; its verdict is attached as ``cross_check`` and a
        disagreement is logged by ``compare_paths``.
        """
        self._warn_on_policy_mismatch()
        try:
            if self.compare:
                primary, fallback = self.compare_paths(borrower_id)
                return primary.model_copy(update={"cross_check": fallback})
            return self.check_aggregate(borrower_id)
        except StoreError:
            logger.warning(
                "Eligibility aggregate unavailable for borrower %s, using fallback",
                borrower_id,
            )
            self.session.rollback()
            return self.check_fallback(borrower_id)

    def compare_paths(self, borrower_id: str) -> tuple[EligibilityResult, EligibilityResult]:
        """
        Run both computations and log when their verdicts diverge.

        Returns:
            (aggregate result, fallback result)
        """
        primary = self.check_aggregate(borrower_id)
        fallback = self.check_fallback(borrower_id)
        if primary.eligible != fallback.eligible:
            logger.error(
                "Eligibility paths disagree for borrower %s: aggregate=%s (%s), fallback=%s (%s)",
                borrower_id,
                primary.eligible,
                primary.message,
                fallback.eligible,
                fallback.message,
            )
        return primary, fallback
