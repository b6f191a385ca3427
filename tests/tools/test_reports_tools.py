"""Tests for the reporting and maintenance tools."""

from sqlalchemy import update

from library_circulation_mcp.database.schema import BookCopy as BookCopyDB
from library_circulation_mcp.database.schema import CopyStatusEnum
from library_circulation_mcp.tools.reports import (
    fine_stats_handler,
    library_stats_handler,
    scan_inconsistencies_handler,
)

from ..conftest import TENANT


def response_text(result: dict) -> str:
    return result["content"][0]["text"]


async def test_library_stats(mock_get_session, stocked_book, borrowers, issue):
    _, copies = stocked_book
    issue(copies[0].id)

    result = await library_stats_handler({"tenant_id": TENANT})

    data = result["data"]
    assert data["total_books"] == 1
    assert data["total_copies"] == 5
    assert data["issued_copies"] == 1
    assert data["active_loans"] == 1
    assert response_text(result).startswith("1 books, 4/5 copies available")


async def test_fine_stats_empty(mock_get_session, test_config):
    result = await fine_stats_handler({"tenant_id": TENANT})

    assert result["data"]["total_overdue_fines"] == 0.0
    assert result["data"]["recent_fines"] == []


async def test_stats_require_tenant(mock_get_session):
    result = await library_stats_handler({})

    assert result["isError"] is True
    assert response_text(result).startswith("validation_error:")


async def test_scan_then_repair(mock_get_session, book_repo, stocked_book, borrowers, issue):
    book, copies = stocked_book
    issue(copies[0].id)
    mock_get_session.execute(
        update(BookCopyDB)
        .where(BookCopyDB.id == copies[1].id)
        .values(status=CopyStatusEnum.ISSUED)
    )
    mock_get_session.commit()

    scan = await scan_inconsistencies_handler({"tenant_id": TENANT})

    assert scan["data"]["is_consistent"] is False
    assert scan["data"]["stranded_copies"] == [copies[1].id]
    assert scan["data"]["repaired"] is False
    assert "1 issued copies without a loan" in response_text(scan)

    repaired = await scan_inconsistencies_handler({"tenant_id": TENANT, "repair": True})

    assert repaired["data"]["repaired"] is True
    assert response_text(repaired).endswith("All repaired")

    clean = await scan_inconsistencies_handler({"tenant_id": TENANT})
    assert clean["data"]["is_consistent"] is True
    assert response_text(clean) == "No inconsistencies found"
    assert book_repo.get_book(book.id).available_copies == 4
