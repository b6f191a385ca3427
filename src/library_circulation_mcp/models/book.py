"""
Catalog models: books and their physical copies.

Also home to the ISBN and publication-year rules, since both the repository
and the tool input schemas apply them.
"""

import re
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

ISBN10_PATTERN = re.compile(r"^\d{9}[\dX]$")
ISBN13_PATTERN = re.compile(r"^\d{13}$")
ISBN_STRIP_PATTERN = re.compile(r"[^0-9Xx]")

MIN_PUBLICATION_YEAR = 1000
PUBLICATION_YEAR_LOOKAHEAD = 5


class CopyStatus(str, Enum):
    """Status of a physical copy."""

    AVAILABLE = "available"
    ISSUED = "issued"
    LOST = "lost"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"


def clean_isbn(raw: str) -> str:
    """Strip everything but digits and X, then uppercase."""
    return ISBN_STRIP_PATTERN.sub("", raw).upper()


def is_valid_isbn(isbn: str) -> bool:
    """Check a cleaned ISBN against the ISBN-10 / ISBN-13 shapes.

    Only the shape is checked, not the check digit.
    """
    if len(isbn) == 10:
        return bool(ISBN10_PATTERN.match(isbn))
    if len(isbn) == 13:
        return bool(ISBN13_PATTERN.match(isbn))
    return False


def normalize_isbn(raw: str | None) -> str | None:
    """
    Normalize an ISBN for storage.

    Empty input means "no ISBN" and returns None.

    Raises:
        ValueError: If the cleaned value is not a valid ISBN-10 or ISBN-13
    """
    if raw is None or str(raw).strip() == "":
        return None
    cleaned = clean_isbn(str(raw))
    if not is_valid_isbn(cleaned):
        raise ValueError("Invalid ISBN format")
    return cleaned


def max_publication_year() -> int:
    return datetime.now().year + PUBLICATION_YEAR_LOOKAHEAD


def normalize_publication_year(raw: int | str | None) -> int | None:
    """
    Normalize a publication year; empty input means "unknown".

    Raises:
        ValueError: If the value is not an integer within [1000, current year + 5]
    """
    if raw is None or str(raw).strip() == "":
        return None
    upper = max_publication_year()
    try:
        year = int(str(raw).strip())
    except ValueError:
        raise ValueError(
            f"publication_year must be between {MIN_PUBLICATION_YEAR} and {upper}"
        ) from None
    if year < MIN_PUBLICATION_YEAR or year > upper:
        raise ValueError(f"publication_year must be between {MIN_PUBLICATION_YEAR} and {upper}")
    return year


class Book(BaseModel):
    """A catalog title with cached copy counts."""

    id: str
    tenant_id: str
    title: str
    author: str
    isbn: str | None = None
    category: str | None = None
    publisher: str | None = None
    publication_year: int | None = None
    description: str | None = None
    total_copies: int = Field(default=0, ge=0)
    available_copies: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0


class BookCopy(BaseModel):
    """One physical copy of a book."""

    id: str
    book_id: str
    tenant_id: str
    accession_number: str
    status: CopyStatus
    purchase_date: date | None = None
    price: float | None = None
    condition_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
