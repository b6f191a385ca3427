"""
Inventory repository: books and their physical copies.

Owns the catalog rows and keeps each book's cached ``total_copies`` /
``available_copies`` in line with its copies. The counts are always
recomputed from the copies inside a single UPDATE, never incremented, so
concurrent copy mutations cannot make them drift. New copy batches commit
before their count update, which leaves a short window where the counts lag.
"""

import logging
from datetime import date

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.book import Book as BookModel
from ..models.book import BookCopy as BookCopyModel
from ..models.book import normalize_isbn, normalize_publication_year
from ..observability import trace_operation
from .accession import AccessionAllocator, CopyMetadata
from .errors import ConflictError, NotFoundError, StoreError, ValidationError
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import CopyStatusEnum
from .schema import Loan as LoanDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class BookCreateSchema(BaseModel):
    """Schema for creating a book. Copies are added separately."""

    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    isbn: str | None = None
    category: str | None = Field(None, max_length=100)
    publisher: str | None = Field(None, max_length=255)
    publication_year: int | str | None = None
    description: str | None = None


class BookUpdateSchema(BaseModel):
    """Schema for updating a book; only fields that are set are applied."""

    title: str | None = Field(None, min_length=1, max_length=255)
    author: str | None = Field(None, min_length=1, max_length=255)
    isbn: str | None = None
    category: str | None = Field(None, max_length=100)
    publisher: str | None = Field(None, max_length=255)
    publication_year: int | str | None = None
    description: str | None = None


class CopyCreateSchema(BaseModel):
    """Schema for adding copies of a book."""

    count: int = Field(..., ge=1)
    purchase_date: date | None = None
    price: float | None = Field(None, ge=0.0)
    condition_notes: str | None = None


class CopyUpdateSchema(BaseModel):
    """Schema for updating a copy (status changes from the desk, price, notes)."""

    status: CopyStatusEnum | None = None
    purchase_date: date | None = None
    price: float | None = Field(None, ge=0.0)
    condition_notes: str | None = None


def _normalize_book_fields(fields: dict) -> dict:
    """Apply ISBN and publication-year rules to whichever of them are present."""
    try:
        if "isbn" in fields:
            fields["isbn"] = normalize_isbn(fields["isbn"])
        if "publication_year" in fields:
            fields["publication_year"] = normalize_publication_year(fields["publication_year"])
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return fields


class BookRepository(BaseRepository[BookDB, BookModel]):
    """
    Repository for catalog titles and their copies.

    Every copy mutation ends with ``recompute_counts`` on the parent book.
    """

    def __init__(self, session: Session, tenant_id: str):
        super().__init__(session, tenant_id)

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    @property
    def response_schema(self) -> type[BookModel]:
        return BookModel

    # ==================== BOOKS ====================

    def list_books(
        self, pagination: PaginationParams | None = None
    ) -> list[BookModel] | PaginatedResponse[BookModel]:
        """All titles of the tenant, ordered by title."""
        return self.get_all(pagination=pagination, order_by="title")

    def get_book(self, book_id: str) -> BookModel:
        return self._to_response_model(self._require_db_obj(book_id))

    @trace_operation("create_book")
    def create_book(self, data: BookCreateSchema) -> BookModel:
        """
        Create a catalog title with zero copies.

        Raises:
            ValidationError: If the ISBN or publication year is malformed
        """
        fields = _normalize_book_fields(data.model_dump())
        book = BookDB(
            tenant_id=self.tenant_id,
            total_copies=0,
            available_copies=0,
            **fields,
        )
        self.session.add(book)
        safe_commit(self.session, "create book")
        self.session.refresh(book)

        logger.info("Created book %s (%s) for tenant %s", book.id, book.title, self.tenant_id)
        return self._to_response_model(book)

    @trace_operation("update_book")
    def update_book(self, book_id: str, data: BookUpdateSchema) -> BookModel:
        """
        Update the supplied fields of a book. Counts cannot be set directly.

        Raises:
            NotFoundError: If the book does not exist
            ValidationError: If a supplied ISBN or publication year is malformed
        """
        book = self._require_db_obj(book_id)
        fields = _normalize_book_fields(data.model_dump(exclude_unset=True))

        for name in ("title", "author"):
            if name in fields and fields[name] is None:
                raise ValidationError(f"{name} cannot be empty")

        for field, value in fields.items():
            setattr(book, field, value)

        safe_commit(self.session, "update book")
        self.session.refresh(book)
        logger.info("Updated book %s fields %s", book_id, sorted(fields))
        return self._to_response_model(book)

    @trace_operation("delete_book")
    def delete_book(self, book_id: str) -> bool:
        """
        Delete a book that has no copies.

        Raises:
            NotFoundError: If the book does not exist
            ConflictError: If any copy still references the book
        """
        book = self._require_db_obj(book_id)

        copy_count = self._count_copies(book_id)
        if copy_count > 0:
            raise ConflictError(
                "Cannot delete book with existing copies. Delete all copies first."
            )

        self.session.delete(book)
        safe_commit(self.session, "delete book")
        logger.info("Deleted book %s", book_id)
        return True

    # ==================== COPIES ====================

    def _copies_query(self, book_id: str):
        return (
            select(BookCopyDB)
            .where(BookCopyDB.book_id == book_id, BookCopyDB.tenant_id == self.tenant_id)
            .order_by(BookCopyDB.accession_number)
        )

    def _count_copies(self, book_id: str) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(BookCopyDB)
                .where(BookCopyDB.book_id == book_id, BookCopyDB.tenant_id == self.tenant_id)
            ).scalar(),
            "Failed to count copies",
        )

    def _require_copy(self, copy_id: str) -> BookCopyDB:
        copy = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB).where(
                    BookCopyDB.id == copy_id, BookCopyDB.tenant_id == self.tenant_id
                )
            ).scalar_one_or_none(),
            "Failed to get copy",
        )
        if copy is None:
            raise NotFoundError(f"Book copy {copy_id} not found")
        return copy

    def get_copy(self, copy_id: str) -> BookCopyModel:
        return BookCopyModel.model_validate(self._require_copy(copy_id), from_attributes=True)

    def get_book_copies(self, book_id: str) -> list[BookCopyModel]:
        """All copies of a book, ordered by accession number."""
        copies = safe_query(
            self.session,
            lambda s: s.execute(self._copies_query(book_id)).scalars().all(),
            "Failed to get book copies",
        )
        return [BookCopyModel.model_validate(c, from_attributes=True) for c in copies]

    def get_available_copies(self, book_id: str) -> list[BookCopyModel]:
        query = self._copies_query(book_id).where(BookCopyDB.status == CopyStatusEnum.AVAILABLE)
        copies = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get available copies",
        )
        return [BookCopyModel.model_validate(c, from_attributes=True) for c in copies]

    @trace_operation("create_copies")
    def create_copies(
        self,
        book_id: str,
        data: CopyCreateSchema,
        allocator: AccessionAllocator | None = None,
    ) -> list[BookCopyModel]:
        """
        Add ``data.count`` available copies with auto-generated accession numbers.

        Raises:
            NotFoundError: If the book does not exist
            ValidationError: If the count is out of range
            TransientError: If accession numbering kept colliding
        """
        self._require_db_obj(book_id)

        allocator = allocator or AccessionAllocator(self.session, self.tenant_id)
        copies = allocator.allocate(
            book_id,
            data.count,
            CopyMetadata(
                purchase_date=data.purchase_date,
                price=data.price,
                condition_notes=data.condition_notes,
            ),
        )
        result = [BookCopyModel.model_validate(c, from_attributes=True) for c in copies]

        self.recompute_counts(book_id)
        safe_commit(self.session, "update book counts")
        return result

    @trace_operation("update_copy")
    def update_copy(self, copy_id: str, data: CopyUpdateSchema) -> BookCopyModel:
        """
        Update a copy's attributes.

        Status moves into or out of ``issued`` belong to the circulation engine,
        so they are refused here.

        Raises:
            NotFoundError: If the copy does not exist
            ConflictError: If the update would issue the copy or release an issued one
            ValidationError: If status is explicitly cleared
        """
        copy = self._require_copy(copy_id)
        fields = data.model_dump(exclude_unset=True)
        if "status" in fields and fields["status"] is None:
            raise ValidationError("status cannot be empty")

        new_status = fields.get("status")
        if new_status is not None and new_status != copy.status:
            if CopyStatusEnum.ISSUED in (new_status, copy.status):
                raise ConflictError(
                    "Issued status is managed by circulation; use issue/return/lost instead"
                )

        for field, value in fields.items():
            setattr(copy, field, value)

        self.recompute_counts(copy.book_id)
        safe_commit(self.session, "update copy")
        self.session.refresh(copy)
        logger.info("Updated copy %s fields %s", copy_id, sorted(fields))
        return BookCopyModel.model_validate(copy, from_attributes=True)

    @trace_operation("delete_copy")
    def delete_copy(self, copy_id: str) -> bool:
        """
        Delete a copy that is not issued and has no loan history.

        Raises:
            NotFoundError: If the copy does not exist
            ConflictError: If the copy is issued or referenced by loans
        """
        copy = self._require_copy(copy_id)
        if copy.status == CopyStatusEnum.ISSUED:
            raise ConflictError("Cannot delete a copy that is currently issued")

        loan_count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count()).select_from(LoanDB).where(LoanDB.copy_id == copy_id)
            ).scalar(),
            "Failed to count loans for copy",
        )
        if loan_count > 0:
            raise ConflictError("Cannot delete a copy with loan history")

        book_id = copy.book_id
        self.session.delete(copy)
        self.session.flush()
        self.recompute_counts(book_id)
        safe_commit(self.session, "delete copy")
        logger.info("Deleted copy %s of book %s", copy_id, book_id)
        return True

    # ==================== COUNTS ====================

    def count_copies_by_status(self, book_id: str) -> tuple[int, int]:
        """(total, available) computed from the copies themselves."""
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB.status, func.count())
                .where(BookCopyDB.book_id == book_id, BookCopyDB.tenant_id == self.tenant_id)
                .group_by(BookCopyDB.status)
            ).all(),
            "Failed to count copies by status",
        )
        total = sum(count for _, count in rows)
        available = sum(count for status, count in rows if status == CopyStatusEnum.AVAILABLE)
        return total, available

    def recompute_counts(self, book_id: str) -> tuple[int, int]:
        """
        Re-scan a book's copies and write both cached counts.

        The counts are computed inside the UPDATE itself, so a concurrent
        writer can never overwrite them with a tally taken before its own
        change. Flushes but does not commit; the caller's unit of work
        decides when.
        """
        self.session.flush()
        copies = (
            select(func.count())
            .select_from(BookCopyDB)
            .where(BookCopyDB.book_id == book_id, BookCopyDB.tenant_id == self.tenant_id)
        )
        try:
            self.session.execute(
                update(BookDB)
                .where(BookDB.id == book_id, BookDB.tenant_id == self.tenant_id)
                .values(
                    total_copies=copies.scalar_subquery(),
                    available_copies=copies.where(
                        BookCopyDB.status == CopyStatusEnum.AVAILABLE
                    ).scalar_subquery(),
                )
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            logger.exception("Failed to write copy counts for book %s", book_id)
            raise StoreError(f"Failed to update copy counts for book {book_id}") from e

        total, available = self.count_copies_by_status(book_id)
        logger.debug("Book %s counts: total=%d available=%d", book_id, total, available)
        return total, available
