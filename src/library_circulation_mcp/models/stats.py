"""Dashboard aggregates and repair-scan reports."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RecentLoan(BaseModel):
    id: str
    book_title: str
    issue_date: datetime
    due_date: datetime
    status: str


class OverdueLoanEntry(BaseModel):
    id: str
    book_title: str
    borrower_id: str
    due_date: datetime
    days_overdue: int


class LibraryStats(BaseModel):
    """Inventory, loan and fine totals for one tenant."""

    total_books: int = 0
    total_copies: int = 0
    available_copies: int = 0
    issued_copies: int = 0
    lost_copies: int = 0
    active_loans: int = 0
    overdue_loans: int = 0
    total_fines_collected: float = 0.0
    pending_fines: float = 0.0
    recent_loans: list[RecentLoan] = Field(default_factory=list)
    overdue_list: list[OverdueLoanEntry] = Field(default_factory=list)


class FineEntry(BaseModel):
    """One row of the recent-fines feed.

    Condition fines are reported with ``paid=True`` since they are collected
    at the desk.
    """

    id: str
    borrower_id: str
    book_title: str
    amount: float
    type: Literal["overdue", "condition"]
    paid: bool
    created_at: datetime


class FineStats(BaseModel):
    total_overdue_fines: float = 0.0
    unpaid_overdue_fines: float = 0.0
    paid_overdue_fines: float = 0.0
    total_condition_fines: float = 0.0
    overdue_fines_count: int = 0
    recent_fines: list[FineEntry] = Field(default_factory=list)


class CountMismatch(BaseModel):
    book_id: str
    cached_total: int
    cached_available: int
    actual_total: int
    actual_available: int


class InconsistencyReport(BaseModel):
    """
    Disagreements between loans, copies and cached counts.

    ``orphaned_loans``: outstanding loans whose copy is not marked issued.
    ``stranded_copies``: copies marked issued with no outstanding loan.
    ``count_mismatches``: books whose cached counts disagree with their copies.
    """

    orphaned_loans: list[str] = Field(default_factory=list)
    stranded_copies: list[str] = Field(default_factory=list)
    count_mismatches: list[CountMismatch] = Field(default_factory=list)
    repaired: bool = False

    @property
    def is_consistent(self) -> bool:
        return not (self.orphaned_loans or self.stranded_copies or self.count_mismatches)
