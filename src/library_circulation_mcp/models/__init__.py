"""
Pydantic models for the Library Circulation MCP Server.

These are the shapes repositories return and tool handlers serialize:

- book: catalog titles, physical copies, ISBN / publication-year rules
- circulation: loans, fines and operation results
- directory: borrower and library policy views
- eligibility: borrow / no-borrow decisions
- stats: dashboard aggregates and repair-scan reports
"""

from .book import Book, BookCopy, CopyStatus
from .circulation import (
    Fine,
    IssueResult,
    Loan,
    LoanDetail,
    LoanStatus,
    LostResult,
    OverdueSweepResult,
    ReturnResult,
)
from .directory import Borrower, LibraryPolicy
from .eligibility import EligibilityResult, EligibilitySource
from .stats import FineStats, InconsistencyReport, LibraryStats

__all__ = [
    "Book",
    "BookCopy",
    "Borrower",
    "CopyStatus",
    "EligibilityResult",
    "EligibilitySource",
    "Fine",
    "FineStats",
    "InconsistencyReport",
    "IssueResult",
    "LibraryPolicy",
    "LibraryStats",
    "Loan",
    "LoanDetail",
    "LoanStatus",
    "LostResult",
    "OverdueSweepResult",
    "ReturnResult",
]
