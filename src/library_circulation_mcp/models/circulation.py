"""
Circulation models: loans, fines and the results of circulation operations.

Results are plain Pydantic models so tool handlers can ``model_dump(mode="json")``
them straight into MCP responses.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LoanStatus(str, Enum):
    """Status of a loan. OVERDUE is an outstanding loan tagged by the overdue sweep."""

    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    LOST = "lost"


class Loan(BaseModel):
    """A copy lent to a borrower."""

    id: str
    copy_id: str
    borrower_id: str
    tenant_id: str
    issue_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: LoanStatus
    fine_amount: float = Field(default=0.0, ge=0.0)
    fine_paid: bool = False
    collected_amount: float = Field(default=0.0, ge=0.0)
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class LoanDetail(Loan):
    """A loan joined with its copy and book, for listings."""

    accession_number: str | None = None
    book_id: str | None = None
    book_title: str | None = None
    copy_price: float | None = None


class Fine(BaseModel):
    """An unpaid (or since paid) charge against a borrower."""

    id: str
    loan_id: str
    borrower_id: str
    tenant_id: str
    amount: float = Field(..., gt=0.0)
    paid: bool = False
    paid_at: datetime | None = None
    reason: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class IssueResult(BaseModel):
    """Outcome of issuing a copy. ``warning`` is advisory; the loan exists."""

    loan: Loan
    warning: str | None = None


class ReturnResult(BaseModel):
    """Outcome of returning a copy."""

    loan: Loan
    fine: float
    days_late: int
    collected: bool


class LostResult(BaseModel):
    """Outcome of marking a loan lost."""

    loan: Loan
    total_cost: float
    book_price: float
    processing_fee: float


class OverdueSweepResult(BaseModel):
    """Outcome of tagging overdue loans."""

    updated_count: int
    affected_borrowers: list[str] = Field(default_factory=list)
