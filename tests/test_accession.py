"""
Tests for accession number allocation.

The collision path is driven two ways: deterministically, by making the
allocator read a stale maximum, and for real, by running two batches from
separate threads against the same SQLite file.
"""

import threading

import pytest
from sqlalchemy import func, select

from library_circulation_mcp.database.accession import AccessionAllocator, CopyMetadata
from library_circulation_mcp.database.errors import StoreError, TransientError, ValidationError
from library_circulation_mcp.database.inventory_repository import (
    BookCreateSchema,
    BookRepository,
    CopyCreateSchema,
)
from library_circulation_mcp.database.schema import BookCopy

from .conftest import TENANT


@pytest.fixture
def book(book_repo):
    return book_repo.create_book(BookCreateSchema(title="Dune", author="Frank Herbert"))


def stale_next_number(allocator: AccessionAllocator, stale: list[int]):
    """Make ``next_number`` return the given stale values before the real ones."""
    real = allocator.next_number
    pending = list(stale)

    def _next_number() -> int:
        if pending:
            return pending.pop(0)
        return real()

    allocator.next_number = _next_number


class TestNumbering:
    def test_format_and_parse(self, test_session, test_config):
        allocator = AccessionAllocator(test_session, TENANT)

        assert allocator.format_number(42) == "LIB-000042"
        assert allocator.parse_number("LIB-000042") == 42

    def test_custom_prefix_and_width(self, test_session, test_config):
        allocator = AccessionAllocator(test_session, TENANT, prefix="BK", width=4)

        assert allocator.format_number(7) == "BK-0007"

    def test_first_number_is_one(self, test_session, test_config):
        assert AccessionAllocator(test_session, TENANT).next_number() == 1

    def test_next_number_follows_maximum(self, test_session, book_repo, book):
        book_repo.create_copies(book.id, CopyCreateSchema(count=12))

        assert AccessionAllocator(test_session, TENANT).next_number() == 13

    def test_metadata_applied_to_batch(self, test_session, book):
        allocator = AccessionAllocator(test_session, TENANT)

        copies = allocator.allocate(
            book.id, 2, CopyMetadata(price=15.0, condition_notes="Donated")
        )

        assert all(c.price == 15.0 and c.condition_notes == "Donated" for c in copies)

    def test_width_exhaustion_is_reported(self, test_session, book):
        allocator = AccessionAllocator(test_session, TENANT, width=4)
        test_session.add(
            BookCopy(book_id=book.id, tenant_id=TENANT, accession_number="LIB-9998")
        )
        test_session.commit()

        with pytest.raises(StoreError, match="exhausted"):
            allocator.allocate(book.id, 2)

        [last] = allocator.allocate(book.id, 1)
        assert last.accession_number == "LIB-9999"

        with pytest.raises(StoreError, match="exhausted"):
            allocator.allocate(book.id, 1)

    @pytest.mark.parametrize("count", [0, 501])
    def test_count_out_of_range(self, test_session, book, count):
        allocator = AccessionAllocator(test_session, TENANT)

        with pytest.raises(ValidationError, match="between 1 and 500"):
            allocator.allocate(book.id, count)


class TestCollisions:
    def test_collision_is_retried_with_backoff(self, test_session, book_repo, book):
        book_repo.create_copies(book.id, CopyCreateSchema(count=1))
        sleeps: list[float] = []
        allocator = AccessionAllocator(test_session, TENANT, sleep=sleeps.append)
        stale_next_number(allocator, [1])

        copies = allocator.allocate(book.id, 2)

        assert [c.accession_number for c in copies] == ["LIB-000002", "LIB-000003"]
        assert sleeps == [0.1]

    def test_exhausted_retries_raise_transient_error(self, test_session, book_repo, book):
        book_repo.create_copies(book.id, CopyCreateSchema(count=1))
        sleeps: list[float] = []
        allocator = AccessionAllocator(test_session, TENANT, sleep=sleeps.append)
        stale_next_number(allocator, [1, 1, 1])

        with pytest.raises(TransientError, match="Please try again"):
            allocator.allocate(book.id, 3)

        assert sleeps == [0.1, 0.2]
        total = test_session.execute(select(func.count()).select_from(BookCopy)).scalar()
        assert total == 1

    def test_non_unique_integrity_error_is_not_retried(self, test_session, test_config):
        sleeps: list[float] = []
        allocator = AccessionAllocator(test_session, TENANT, sleep=sleeps.append)

        with pytest.raises(StoreError):
            allocator.allocate("no-such-book", 1)

        assert sleeps == []

    @pytest.mark.concurrency
    def test_concurrent_batches_get_distinct_numbers(self, db_manager, book):
        barrier = threading.Barrier(2)
        errors: list[Exception] = []

        def create_batch() -> None:
            session = db_manager.create_session()
            try:
                repo = BookRepository(session, TENANT)
                barrier.wait()
                repo.create_copies(book.id, CopyCreateSchema(count=50))
            except Exception as e:  # collected and asserted below
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=create_batch) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []

        with db_manager.session_scope() as session:
            numbers = session.execute(
                select(BookCopy.accession_number).where(BookCopy.book_id == book.id)
            ).scalars().all()
            assert len(numbers) == 100
            assert len(set(numbers)) == 100
            assert sorted(numbers) == [f"LIB-{n:06d}" for n in range(1, 101)]

            repo = BookRepository(session, TENANT)
            refreshed = repo.get_book(book.id)
            assert refreshed.total_copies == 100
            assert refreshed.available_copies == 100
