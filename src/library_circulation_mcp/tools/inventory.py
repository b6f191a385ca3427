"""
Inventory tools: catalog titles and their physical copies.

1. create_book / update_book / delete_book: catalog maintenance with ISBN and
   publication-year validation
2. list_books: the tenant's catalog, or one title with its copies
3. create_copies: batch copy creation with auto-numbered accessions
4. update_copy / delete_copy: desk-side copy maintenance

Book counts are recomputed by the repository after every copy change, so the
responses always carry fresh ``total_copies`` / ``available_copies``.
"""

import logging
from datetime import date
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from ..database.errors import RepositoryException
from ..database.inventory_repository import (
    BookCreateSchema,
    BookRepository,
    BookUpdateSchema,
    CopyCreateSchema,
    CopyUpdateSchema,
)
from ..database.repository import PaginationParams
from ..database.schema import CopyStatusEnum
from ..database.session import get_session
from .responses import (
    error_response,
    invalid_arguments_response,
    repository_error_response,
    success_response,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)

TENANT_FIELD = Field(
    ...,
    min_length=1,
    description="Tenant (school) the catalog belongs to",
    examples=["school_001"],
)


# =============================================================================
# BOOK TOOLS
# =============================================================================


class CreateBookInput(BaseModel):
    """Input schema for the create_book tool."""

    tenant_id: str = TENANT_FIELD
    title: str = Field(..., min_length=1, max_length=255, examples=["The Hobbit"])
    author: str = Field(..., min_length=1, max_length=255, examples=["J.R.R. Tolkien"])
    isbn: str | None = Field(
        default=None,
        description="ISBN-10 or ISBN-13; hyphens and spaces are stripped",
        examples=["0-306-40615-2", "9780306406157"],
    )
    category: str | None = Field(default=None, max_length=100, examples=["Fiction"])
    publisher: str | None = Field(default=None, max_length=255)
    publication_year: int | None = Field(default=None, examples=[1937])
    description: str | None = None


async def create_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the create_book tool."""
    try:
        try:
            params = CreateBookInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("create_book", e)

        with get_session() as session:
            try:
                repo = BookRepository(session, params.tenant_id)
                book = repo.create_book(
                    BookCreateSchema(**params.model_dump(exclude={"tenant_id"}))
                )
            except RepositoryException as e:
                return repository_error_response("create_book", e)

        return success_response(
            f"Created book '{book.title}' by {book.author}. Add copies with create_copies.",
            {"book": book.model_dump(mode="json")},
        )

    except Exception as e:
        return unexpected_error_response("create_book", e)


class UpdateBookInput(BaseModel):
    """
    Input schema for the update_book tool.

    Only supplied fields change; copy counts are not editable here.
    """

    tenant_id: str = TENANT_FIELD
    book_id: str = Field(..., min_length=1)
    title: str | None = Field(default=None, min_length=1, max_length=255)
    author: str | None = Field(default=None, min_length=1, max_length=255)
    isbn: str | None = None
    category: str | None = Field(default=None, max_length=100)
    publisher: str | None = Field(default=None, max_length=255)
    publication_year: int | None = None
    description: str | None = None


async def update_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the update_book tool."""
    try:
        try:
            params = UpdateBookInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("update_book", e)

        changes = params.model_dump(exclude_unset=True, exclude={"tenant_id", "book_id"})
        if not changes:
            return error_response("validation_error: No fields to update")

        with get_session() as session:
            try:
                repo = BookRepository(session, params.tenant_id)
                book = repo.update_book(params.book_id, BookUpdateSchema(**changes))
            except RepositoryException as e:
                return repository_error_response("update_book", e)

        return success_response(
            f"Updated book '{book.title}' ({', '.join(sorted(changes))})",
            {"book": book.model_dump(mode="json")},
        )

    except Exception as e:
        return unexpected_error_response("update_book", e)


class DeleteBookInput(BaseModel):
    tenant_id: str = TENANT_FIELD
    book_id: str = Field(..., min_length=1)


async def delete_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the delete_book tool. Books with copies cannot be deleted."""
    try:
        try:
            params = DeleteBookInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("delete_book", e)

        with get_session() as session:
            try:
                BookRepository(session, params.tenant_id).delete_book(params.book_id)
            except RepositoryException as e:
                return repository_error_response("delete_book", e)

        return success_response(
            f"Deleted book {params.book_id}", {"deleted": True, "book_id": params.book_id}
        )

    except Exception as e:
        return unexpected_error_response("delete_book", e)


class ListBooksInput(BaseModel):
    """
    Input schema for the list_books tool.

    With ``book_id`` the tool returns that title and its copies; without it,
    one page of the catalog ordered by title.
    """

    tenant_id: str = TENANT_FIELD
    book_id: str | None = None
    available_only: bool = Field(
        default=False, description="With book_id, list only available copies"
    )
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


async def list_books_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the list_books tool."""
    try:
        try:
            params = ListBooksInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("list_books", e)

        with get_session() as session:
            try:
                repo = BookRepository(session, params.tenant_id)
                if params.book_id:
                    book = repo.get_book(params.book_id)
                    copies = (
                        repo.get_available_copies(params.book_id)
                        if params.available_only
                        else repo.get_book_copies(params.book_id)
                    )
                else:
                    page = repo.list_books(
                        PaginationParams(page=params.page, page_size=params.page_size)
                    )
            except RepositoryException as e:
                return repository_error_response("list_books", e)

        if params.book_id:
            return success_response(
                f"'{book.title}': {book.available_copies} of {book.total_copies} copies available",
                {
                    "book": book.model_dump(mode="json"),
                    "copies": [c.model_dump(mode="json") for c in copies],
                },
            )

        return success_response(
            f"Found {page.total} books (page {page.page} of {max(page.total_pages, 1)})",
            {
                "books": [b.model_dump(mode="json") for b in page.items],
                "pagination": {
                    "page": page.page,
                    "page_size": page.page_size,
                    "total": page.total,
                    "total_pages": page.total_pages,
                    "has_next": page.has_next,
                    "has_previous": page.has_previous,
                },
            },
        )

    except Exception as e:
        return unexpected_error_response("list_books", e)


# =============================================================================
# COPY TOOLS
# =============================================================================


class CreateCopiesInput(BaseModel):
    """Input schema for the create_copies tool."""

    tenant_id: str = TENANT_FIELD
    book_id: str = Field(..., min_length=1)
    count: int = Field(..., ge=1, le=500, description="Number of copies to add")
    purchase_date: date | None = None
    price: float | None = Field(default=None, ge=0.0, examples=[12.99])
    condition_notes: str | None = None


async def create_copies_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the create_copies tool.

    A ``transient`` error means concurrent batches kept taking the same
    accession range; the whole call can simply be retried.
    """
    try:
        try:
            params = CreateCopiesInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("create_copies", e)

        with get_session() as session:
            try:
                repo = BookRepository(session, params.tenant_id)
                copies = repo.create_copies(
                    params.book_id,
                    CopyCreateSchema(
                        count=params.count,
                        purchase_date=params.purchase_date,
                        price=params.price,
                        condition_notes=params.condition_notes,
                    ),
                )
                book = repo.get_book(params.book_id)
            except RepositoryException as e:
                return repository_error_response("create_copies", e)

        first, last = copies[0].accession_number, copies[-1].accession_number
        return success_response(
            f"Added {len(copies)} copies of '{book.title}' ({first} to {last})",
            {
                "book": book.model_dump(mode="json"),
                "copies": [c.model_dump(mode="json") for c in copies],
            },
        )

    except Exception as e:
        return unexpected_error_response("create_copies", e)


class UpdateCopyInput(BaseModel):
    """Input schema for the update_copy tool. Issued status is not settable here."""

    tenant_id: str = TENANT_FIELD
    copy_id: str = Field(..., min_length=1)
    status: CopyStatusEnum | None = Field(
        default=None, examples=["available", "maintenance", "damaged", "lost"]
    )
    purchase_date: date | None = None
    price: float | None = Field(default=None, ge=0.0)
    condition_notes: str | None = None


async def update_copy_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the update_copy tool."""
    try:
        try:
            params = UpdateCopyInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("update_copy", e)

        changes = params.model_dump(exclude_unset=True, exclude={"tenant_id", "copy_id"})
        if not changes:
            return error_response("validation_error: No fields to update")

        with get_session() as session:
            try:
                copy = BookRepository(session, params.tenant_id).update_copy(
                    params.copy_id, CopyUpdateSchema(**changes)
                )
            except RepositoryException as e:
                return repository_error_response("update_copy", e)

        return success_response(
            f"Updated copy {copy.accession_number} (status: {copy.status})",
            {"copy": copy.model_dump(mode="json")},
        )

    except Exception as e:
        return unexpected_error_response("update_copy", e)


class DeleteCopyInput(BaseModel):
    tenant_id: str = TENANT_FIELD
    copy_id: str = Field(..., min_length=1)


async def delete_copy_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the delete_copy tool. Issued copies cannot be deleted."""
    try:
        try:
            params = DeleteCopyInput.model_validate(arguments)
        except pydantic.ValidationError as e:
            return invalid_arguments_response("delete_copy", e)

        with get_session() as session:
            try:
                BookRepository(session, params.tenant_id).delete_copy(params.copy_id)
            except RepositoryException as e:
                return repository_error_response("delete_copy", e)

        return success_response(
            f"Deleted copy {params.copy_id}", {"deleted": True, "copy_id": params.copy_id}
        )

    except Exception as e:
        return unexpected_error_response("delete_copy", e)


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

create_book = {
    "name": "create_book",
    "description": (
        "Add a title to the catalog. ISBN (10 or 13 digits, hyphens allowed) and "
        "publication year are validated. The book starts with zero copies."
    ),
    "inputSchema": CreateBookInput.model_json_schema(),
    "handler": create_book_handler,
}

update_book = {
    "name": "update_book",
    "description": "Update catalog fields of a book. Only supplied fields change.",
    "inputSchema": UpdateBookInput.model_json_schema(),
    "handler": update_book_handler,
}

delete_book = {
    "name": "delete_book",
    "description": "Delete a book. Fails with a conflict while any copy of it exists.",
    "inputSchema": DeleteBookInput.model_json_schema(),
    "handler": delete_book_handler,
}

list_books = {
    "name": "list_books",
    "description": (
        "List the catalog ordered by title, or pass book_id to get one title with its "
        "copies and live availability counts."
    ),
    "inputSchema": ListBooksInput.model_json_schema(),
    "handler": list_books_handler,
}

create_copies = {
    "name": "create_copies",
    "description": (
        "Add physical copies of a book. Each copy gets the next accession number "
        "(LIB-000001, LIB-000002, ...) for the tenant. A transient error means the "
        "numbering collided with another batch; retry the call."
    ),
    "inputSchema": CreateCopiesInput.model_json_schema(),
    "handler": create_copies_handler,
}

update_copy = {
    "name": "update_copy",
    "description": (
        "Update a copy's status (available, maintenance, damaged, lost), price or "
        "condition notes. Issuing and returning go through issue_book / return_book."
    ),
    "inputSchema": UpdateCopyInput.model_json_schema(),
    "handler": update_copy_handler,
}

delete_copy = {
    "name": "delete_copy",
    "description": "Delete a copy that is not issued and has never been lent.",
    "inputSchema": DeleteCopyInput.model_json_schema(),
    "handler": delete_copy_handler,
}
