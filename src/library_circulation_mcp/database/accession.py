"""
Accession number allocation.

Copies are numbered ``LIB-000001``, ``LIB-000002``, ... per tenant. There is
no sequence object: the allocator reads the tenant's highest number, derives
the next range, and inserts the whole batch at once. Two concurrent batches
can read the same maximum; the ``(tenant_id, accession_number)`` unique
constraint rejects whichever commits second, and that caller re-reads and
tries again. No application-level lock is taken.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_config
from .errors import StoreError, TransientError, ValidationError
from .schema import BookCopy as BookCopyDB
from .schema import CopyStatusEnum
from .session import is_unique_violation, safe_query

logger = logging.getLogger(__name__)


@dataclass
class CopyMetadata:
    """Attributes shared by every copy in a batch."""

    purchase_date: date | None = None
    price: float | None = None
    condition_notes: str | None = None


class AccessionAllocator:
    """Reserves accession numbers by inserting copies optimistically."""

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        *,
        prefix: str | None = None,
        width: int | None = None,
        max_retries: int | None = None,
        backoff_ms: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config = get_config()
        self.session = session
        self.tenant_id = tenant_id
        self.prefix = prefix or config.accession_prefix
        self.width = width or config.accession_width
        self.max_retries = max_retries or config.allocation_max_retries
        self.backoff_ms = config.allocation_backoff_ms if backoff_ms is None else backoff_ms
        self.max_batch = config.max_copies_per_batch
        self._sleep = sleep

    def format_number(self, number: int) -> str:
        return f"{self.prefix}-{number:0{self.width}d}"

    def parse_number(self, accession_number: str) -> int:
        return int(accession_number.removeprefix(f"{self.prefix}-"))

    def next_number(self) -> int:
        """Next free number for the tenant, from the current maximum.

        Lexicographic order works because the numeric segment is zero-padded
        to a fixed width.
        """
        current = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB.accession_number)
                .where(
                    BookCopyDB.tenant_id == self.tenant_id,
                    BookCopyDB.accession_number.like(f"{self.prefix}-%"),
                )
                .order_by(BookCopyDB.accession_number.desc())
                .limit(1)
            ).scalar_one_or_none(),
            "Failed to read current accession number",
        )
        if current is None:
            return 1
        return self.parse_number(current) + 1

    def allocate(self, book_id: str, count: int, meta: CopyMetadata | None = None) -> list[BookCopyDB]:
        """
        Insert ``count`` new copies of a book with freshly reserved numbers.

        The inserted rows are committed before returning; on a uniqueness
        collision the attempt is rolled back and the whole
        read-derive-insert cycle repeats with linear backoff.

        Raises:
            ValidationError: If count is outside [1, max_copies_per_batch]
            StoreError: If the batch would need more digits than the configured width
            TransientError: If every attempt collided
        """
        if count < 1 or count > self.max_batch:
            raise ValidationError(f"Number of copies must be between 1 and {self.max_batch}")

        meta = meta or CopyMetadata()

        for attempt in range(1, self.max_retries + 1):
            start = self.next_number()
            if start + count - 1 >= 10**self.width:
                raise StoreError(
                    f"Accession numbers for prefix {self.prefix} are exhausted "
                    f"(width {self.width}, next {start})"
                )
            copies = [
                BookCopyDB(
                    book_id=book_id,
                    tenant_id=self.tenant_id,
                    accession_number=self.format_number(start + offset),
                    status=CopyStatusEnum.AVAILABLE,
                    purchase_date=meta.purchase_date,
                    price=meta.price,
                    condition_notes=meta.condition_notes,
                )
                for offset in range(count)
            ]

            logger.info(
                "Allocating %d copies for book %s starting at %s (attempt %d)",
                count,
                book_id,
                self.format_number(start),
                attempt,
            )
            try:
                self.session.add_all(copies)
                self.session.commit()
            except IntegrityError as e:
                self.session.rollback()
                if not is_unique_violation(e):
                    raise StoreError(f"Failed to insert copies: {e.orig}") from e
                logger.warning(
                    "Accession range starting at %s collided for tenant %s (attempt %d/%d)",
                    self.format_number(start),
                    self.tenant_id,
                    attempt,
                    self.max_retries,
                )
                if attempt < self.max_retries:
                    self._sleep(self.backoff_ms * attempt / 1000)
                continue

            logger.info("Inserted %d copies for book %s", len(copies), book_id)
            return copies

        raise TransientError(
            "Unable to allocate accession numbers due to concurrent conflicts. Please try again."
        )
