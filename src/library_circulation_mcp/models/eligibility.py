"""Eligibility check result."""

from enum import Enum

from pydantic import BaseModel, Field


class EligibilitySource(str, Enum):
    """Which computation produced an eligibility verdict."""

    AGGREGATE = "aggregate"
    FALLBACK = "fallback"


class EligibilityResult(BaseModel):
    """
    Borrow / no-borrow decision with the numbers behind it.

    Optional fields are left unset when the path that produced the verdict
    stopped before computing them (for example, an unknown borrower).
    ``cross_check`` carries the fallback verdict when both paths were run.
    """

    eligible: bool
    message: str
    active_loans: int | None = None
    max_books: int | None = None
    overdue_loans: int | None = None
    unpaid_fines: float | None = None
    warnings: list[str] = Field(default_factory=list)
    source: EligibilitySource = EligibilitySource.AGGREGATE
    cross_check: "EligibilityResult | None" = None
