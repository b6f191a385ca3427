"""
MCP tools for the Library Circulation Server.

Every tool is a dictionary with ``name``, ``description``, ``inputSchema``
and an async ``handler`` taking the raw ``arguments`` dict; ``server.py``
registers them all with FastMCP.
"""

from .circulation import (
    issue_book,
    list_loans,
    mark_book_lost,
    mark_overdue_loans,
    pay_fine,
    return_book,
)
from .eligibility import check_eligibility
from .inventory import (
    create_book,
    create_copies,
    delete_book,
    delete_copy,
    list_books,
    update_book,
    update_copy,
)
from .reports import fine_stats, library_stats, scan_inconsistencies

all_tools = [
    create_book,
    update_book,
    delete_book,
    list_books,
    create_copies,
    update_copy,
    delete_copy,
    issue_book,
    return_book,
    mark_book_lost,
    pay_fine,
    list_loans,
    check_eligibility,
    mark_overdue_loans,
    scan_inconsistencies,
    library_stats,
    fine_stats,
]

__all__ = [
    "all_tools",
    "check_eligibility",
    "create_book",
    "create_copies",
    "delete_book",
    "delete_copy",
    "fine_stats",
    "issue_book",
    "library_stats",
    "list_books",
    "list_loans",
    "mark_book_lost",
    "mark_overdue_loans",
    "pay_fine",
    "return_book",
    "scan_inconsistencies",
    "update_book",
    "update_copy",
]
