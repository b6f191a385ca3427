"""
Reporting and maintenance tools.

1. library_stats: inventory, loan and fine totals with recent and overdue loans
2. fine_stats: overdue vs condition fine totals and the recent fines feed
3. scan_inconsistencies: find (and optionally repair) loans, copies and counts
   that disagree
"""

import logging
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from ..database.circulation_repository import CirculationRepository
from ..database.errors import RepositoryException
from ..database.session import get_session
from ..database.stats_repository import StatsRepository
from ..fines import format_amount
from .responses import (
    invalid_arguments_response,
    repository_error_response,
    success_response,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)


class TenantInput(BaseModel):
    tenant_id: str = Field(..., min_length=1, examples=["school_001"])


async def library_stats_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the library_stats tool."""
    try:
        try:
            params = TenantInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("library_stats", e)

        with get_session() as session:
            try:
                stats = StatsRepository(session, params.tenant_id).get_library_stats()
            except RepositoryException as e:
                return repository_error_response("library_stats", e)

        return success_response(
            (
                f"{stats.total_books} books, {stats.available_copies}/{stats.total_copies} "
                f"copies available, {stats.active_loans} active loans "
                f"({stats.overdue_loans} overdue), {format_amount(stats.pending_fines)} "
                "in pending fines"
            ),
            stats.model_dump(mode="json"),
        )

    except Exception as e:
        return unexpected_error_response("library_stats", e)


async def fine_stats_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the fine_stats tool."""
    try:
        try:
            params = TenantInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("fine_stats", e)

        with get_session() as session:
            try:
                stats = StatsRepository(session, params.tenant_id).get_fine_stats()
            except RepositoryException as e:
                return repository_error_response("fine_stats", e)

        return success_response(
            (
                f"Overdue fines {format_amount(stats.total_overdue_fines)} "
                f"({format_amount(stats.unpaid_overdue_fines)} unpaid), condition fines "
                f"{format_amount(stats.total_condition_fines)}"
            ),
            stats.model_dump(mode="json"),
        )

    except Exception as e:
        return unexpected_error_response("fine_stats", e)


class ScanInconsistenciesInput(BaseModel):
    tenant_id: str = Field(..., min_length=1, examples=["school_001"])
    repair: bool = Field(default=False, description="Fix what the scan finds")


async def scan_inconsistencies_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the scan_inconsistencies tool.

    Without ``repair`` the scan is read-only.
    """
    try:
        try:
            params = ScanInconsistenciesInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("scan_inconsistencies", e)

        with get_session() as session:
            try:
                repo = CirculationRepository(session, params.tenant_id)
                report = (
                    repo.repair_inconsistencies() if params.repair else repo.scan_inconsistencies()
                )
            except RepositoryException as e:
                return repository_error_response("scan_inconsistencies", e)

        if report.is_consistent:
            message = "No inconsistencies found"
        else:
            message = (
                f"Found {len(report.orphaned_loans)} loans with a non-issued copy, "
                f"{len(report.stranded_copies)} issued copies without a loan, "
                f"{len(report.count_mismatches)} books with stale counts"
            )
            if report.repaired:
                message += ". All repaired"

        return success_response(
            message, {**report.model_dump(mode="json"), "is_consistent": report.is_consistent}
        )

    except Exception as e:
        return unexpected_error_response("scan_inconsistencies", e)


library_stats = {
    "name": "library_stats",
    "description": (
        "Library dashboard numbers: books, copies by status, active and overdue loans, "
        "fines collected and pending, recent loans and the oldest overdue loans."
    ),
    "inputSchema": TenantInput.model_json_schema(),
    "handler": library_stats_handler,
}

fine_stats = {
    "name": "fine_stats",
    "description": (
        "Fine totals split into overdue fines (paid and unpaid) and condition charges "
        "collected on return, with the most recent fines."
    ),
    "inputSchema": TenantInput.model_json_schema(),
    "handler": fine_stats_handler,
}

scan_inconsistencies = {
    "name": "scan_inconsistencies",
    "description": (
        "Find loans whose copy is not marked issued, issued copies with no loan, and "
        "books whose copy counts are stale. Pass repair=true to fix them."
    ),
    "inputSchema": ScanInconsistenciesInput.model_json_schema(),
    "handler": scan_inconsistencies_handler,
}
