"""
Circulation tools: the loan lifecycle and fines.

1. issue_book: lend an available copy (policy checks, atomic copy claim)
2. return_book: settle a loan, charging overdue fines and recording damage charges
3. mark_book_lost: retire the copy and charge its replacement
4. pay_fine: settle an outstanding fine
5. list_loans: browse loans by status, borrower or title/accession search
6. mark_overdue_loans: tag outstanding loans past their due date
"""

import logging
from datetime import date, datetime
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from ..database.circulation_repository import (
    CirculationRepository,
    IssueRequestSchema,
    LoanFilterParams,
)
from ..database.errors import RepositoryException
from ..database.repository import PaginationParams
from ..database.schema import LoanStatusEnum
from ..database.session import get_session
from ..fines import format_amount
from .responses import (
    invalid_arguments_response,
    repository_error_response,
    success_response,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)

TENANT_FIELD = Field(
    ...,
    min_length=1,
    description="Tenant (school) the loan belongs to",
    examples=["school_001"],
)


# =============================================================================
# ISSUE TOOL
# =============================================================================


class IssueBookInput(BaseModel):
    """
    Input schema for the issue_book tool.

    The due date defaults to the tenant's loan duration (14 days unless the
    library policy says otherwise).
    """

    tenant_id: str = TENANT_FIELD
    copy_id: str = Field(..., min_length=1, description="Copy to lend")
    borrower_id: str = Field(..., min_length=1, description="Borrower receiving the copy")
    due_date: date | datetime | None = Field(
        default=None,
        description="Optional custom due date",
        examples=["2024-02-15"],
    )
    notes: str | None = Field(default=None, max_length=1000)


async def issue_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the issue_book tool.

    Unpaid fines never block issuing; they are reported alongside the loan
    as a warning.
    """
    try:
        try:
            params = IssueBookInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("issue_book", e)

        with get_session() as session:
            try:
                repo = CirculationRepository(session, params.tenant_id)
                result = repo.issue_book(
                    IssueRequestSchema(
                        copy_id=params.copy_id,
                        borrower_id=params.borrower_id,
                        due_date=params.due_date,
                        notes=params.notes,
                    )
                )
            except RepositoryException as e:
                return repository_error_response("issue_book", e)

        loan = result.loan
        message = (
            f"Issued copy {loan.copy_id} to borrower {loan.borrower_id}. "
            f"Due date: {loan.due_date.strftime('%B %d, %Y')}"
        )
        if result.warning:
            message += f". Warning: {result.warning}"

        return success_response(
            message,
            {"loan": loan.model_dump(mode="json"), "warning": result.warning},
        )

    except Exception as e:
        return unexpected_error_response("issue_book", e)


# =============================================================================
# RETURN TOOL
# =============================================================================


class ReturnBookInput(BaseModel):
    """
    Input schema for the return_book tool.

    ``collected_amount`` is a condition or damage charge paid at the desk. It
    is independent of any overdue fine and is not recorded as an outstanding
    fine.
    """

    tenant_id: str = TENANT_FIELD
    loan_id: str = Field(..., min_length=1)
    collected_amount: float | None = Field(
        default=None,
        ge=0.0,
        description="Condition/damage charge collected on return",
        examples=[10.0],
    )


async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the return_book tool."""
    try:
        try:
            params = ReturnBookInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("return_book", e)

        with get_session() as session:
            try:
                repo = CirculationRepository(session, params.tenant_id)
                result = repo.return_book(params.loan_id, params.collected_amount)
            except RepositoryException as e:
                return repository_error_response("return_book", e)

        message = f"Returned loan {params.loan_id}"
        if result.days_late > 0:
            message += (
                f". Returned {result.days_late} days late, "
                f"overdue fine {format_amount(result.fine)}"
            )
        else:
            message += " on time"
        if result.collected:
            message += f". Collected {format_amount(result.loan.collected_amount)} condition charge"

        return success_response(
            message,
            {
                "loan": result.loan.model_dump(mode="json"),
                "fine": result.fine,
                "days_late": result.days_late,
                "collected": result.collected,
            },
        )

    except Exception as e:
        return unexpected_error_response("return_book", e)


# =============================================================================
# LOST TOOL
# =============================================================================


class MarkBookLostInput(BaseModel):
    tenant_id: str = TENANT_FIELD
    loan_id: str = Field(..., min_length=1)
    processing_fee: float | None = Field(
        default=None,
        ge=0.0,
        description="Fee added to the copy price; defaults to the configured fee ($5.00)",
    )


async def mark_book_lost_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the mark_book_lost tool."""
    try:
        try:
            params = MarkBookLostInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("mark_book_lost", e)

        with get_session() as session:
            try:
                repo = CirculationRepository(session, params.tenant_id)
                result = repo.mark_book_lost(params.loan_id, params.processing_fee)
            except RepositoryException as e:
                return repository_error_response("mark_book_lost", e)

        return success_response(
            (
                f"Marked loan {params.loan_id} lost. Charged {format_amount(result.total_cost)} "
                f"(book price {format_amount(result.book_price)}, "
                f"processing fee {format_amount(result.processing_fee)})"
            ),
            result.model_dump(mode="json"),
        )

    except Exception as e:
        return unexpected_error_response("mark_book_lost", e)


# =============================================================================
# FINE TOOL
# =============================================================================


class PayFineInput(BaseModel):
    tenant_id: str = TENANT_FIELD
    fine_id: str = Field(..., min_length=1)


async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the pay_fine tool."""
    try:
        try:
            params = PayFineInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("pay_fine", e)

        with get_session() as session:
            try:
                fine = CirculationRepository(session, params.tenant_id).pay_fine(params.fine_id)
            except RepositoryException as e:
                return repository_error_response("pay_fine", e)

        return success_response(
            f"Fine {fine.id} of {format_amount(fine.amount)} marked paid",
            {"fine": fine.model_dump(mode="json")},
        )

    except Exception as e:
        return unexpected_error_response("pay_fine", e)


# =============================================================================
# LISTING TOOLS
# =============================================================================


class ListLoansInput(BaseModel):
    """Input schema for the list_loans tool."""

    tenant_id: str = TENANT_FIELD
    status: LoanStatusEnum | None = Field(
        default=None, examples=["active", "overdue", "returned", "lost"]
    )
    borrower_id: str | None = None
    search: str | None = Field(
        default=None,
        max_length=200,
        description="Case-insensitive match on book title or accession number",
    )
    include_unpaid_fines: bool = Field(
        default=False, description="With borrower_id, also list the borrower's unpaid fines"
    )
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


async def list_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the list_loans tool."""
    try:
        try:
            params = ListLoansInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("list_loans", e)

        with get_session() as session:
            try:
                repo = CirculationRepository(session, params.tenant_id)
                page = repo.list_loans(
                    LoanFilterParams(
                        status=params.status,
                        borrower_id=params.borrower_id,
                        search=params.search,
                    ),
                    PaginationParams(page=params.page, page_size=params.page_size),
                )
                fines = (
                    repo.get_unpaid_fines(params.borrower_id)
                    if params.include_unpaid_fines and params.borrower_id
                    else None
                )
            except RepositoryException as e:
                return repository_error_response("list_loans", e)

        data: dict[str, Any] = {
            "loans": [loan.model_dump(mode="json") for loan in page.items],
            "pagination": {
                "page": page.page,
                "page_size": page.page_size,
                "total": page.total,
                "total_pages": page.total_pages,
                "has_next": page.has_next,
                "has_previous": page.has_previous,
            },
        }
        message = f"Found {page.total} loans"
        if fines is not None:
            data["unpaid_fines"] = [f.model_dump(mode="json") for f in fines]
            message += f", {len(fines)} unpaid fines"

        return success_response(message, data)

    except Exception as e:
        return unexpected_error_response("list_loans", e)


class MarkOverdueLoansInput(BaseModel):
    tenant_id: str = TENANT_FIELD


async def mark_overdue_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the mark_overdue_loans tool."""
    try:
        try:
            params = MarkOverdueLoansInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("mark_overdue_loans", e)

        with get_session() as session:
            try:
                result = CirculationRepository(session, params.tenant_id).mark_overdue_loans()
            except RepositoryException as e:
                return repository_error_response("mark_overdue_loans", e)

        return success_response(
            f"Tagged {result.updated_count} loans overdue "
            f"({len(result.affected_borrowers)} borrowers affected)",
            result.model_dump(mode="json"),
        )

    except Exception as e:
        return unexpected_error_response("mark_overdue_loans", e)


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

issue_book = {
    "name": "issue_book",
    "description": (
        "Lend an available copy to a borrower. Fails if the copy is not available, the "
        "borrower is inactive, has overdue books, or has reached the loan limit. Unpaid "
        "fines produce a warning but do not block the loan."
    ),
    "inputSchema": IssueBookInput.model_json_schema(),
    "handler": issue_book_handler,
}

return_book = {
    "name": "return_book",
    "description": (
        "Return a lent copy. Charges an overdue fine per day late (recorded as an "
        "unpaid fine) and optionally records a condition charge collected at the desk."
    ),
    "inputSchema": ReturnBookInput.model_json_schema(),
    "handler": return_book_handler,
}

mark_book_lost = {
    "name": "mark_book_lost",
    "description": (
        "Mark a lent copy as lost. Charges the copy price plus a processing fee as an "
        "unpaid fine and retires the copy."
    ),
    "inputSchema": MarkBookLostInput.model_json_schema(),
    "handler": mark_book_lost_handler,
}

pay_fine = {
    "name": "pay_fine",
    "description": "Mark an outstanding fine as paid.",
    "inputSchema": PayFineInput.model_json_schema(),
    "handler": pay_fine_handler,
}

list_loans = {
    "name": "list_loans",
    "description": (
        "List loans newest first, filtered by status, borrower, or a search over book "
        "title and accession number."
    ),
    "inputSchema": ListLoansInput.model_json_schema(),
    "handler": list_loans_handler,
}

mark_overdue_loans = {
    "name": "mark_overdue_loans",
    "description": "Tag every active loan past its due date as overdue.",
    "inputSchema": MarkOverdueLoansInput.model_json_schema(),
    "handler": mark_overdue_loans_handler,
}
