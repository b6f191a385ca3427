"""
SQLAlchemy database schema for the Library Circulation MCP Server.

Four tables belong to the circulation engine:

- ``books``: catalog titles with cached copy counts
- ``book_copies``: physical copies carrying a per-tenant accession number
- ``loans``: one copy lent to one borrower for an interval
- ``fines``: unpaid charges (overdue returns and lost books)

Two more tables back the external collaborators the engine reads from:
``borrowers`` (identity/roster directory) and ``library_policies`` (per-tenant
policy store). The engine never writes to them outside tests and seeding.
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def generate_id() -> str:
    """Primary keys are UUID4 strings."""
    return str(uuid.uuid4())


class CopyStatusEnum(str, enum.Enum):
    """Database enum for copy status."""

    AVAILABLE = "available"
    ISSUED = "issued"
    LOST = "lost"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status.

    OVERDUE is a tag applied to still-outstanding loans by the overdue sweep;
    it behaves like ACTIVE for every transition.
    """

    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    LOST = "lost"


OUTSTANDING_LOAN_STATUSES = (LoanStatusEnum.ACTIVE, LoanStatusEnum.OVERDUE)


class BorrowerRoleEnum(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"
    PARENT = "parent"


class Book(Base):
    """
    Books table - one row per catalog title.

    ``total_copies`` and ``available_copies`` are caches recomputed from
    ``book_copies`` after every copy mutation.
    """

    __tablename__ = "books"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(13), nullable=True)
    category = Column(String(100), nullable=True)
    publisher = Column(String(255), nullable=True)
    publication_year = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    total_copies = Column(Integer, nullable=False, default=0)
    available_copies = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copies = relationship("BookCopy", back_populates="book")

    __table_args__ = (
        Index("idx_book_tenant", "tenant_id"),
        Index("idx_book_title", "title"),
        Index("idx_book_isbn", "isbn"),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
    )


class BookCopy(Base):
    """
    Book copies table - one row per physical copy.

    Accession numbers are unique per tenant; the allocator relies on this
    constraint to detect concurrent batches that picked the same range.
    """

    __tablename__ = "book_copies"

    id = Column(String(36), primary_key=True, default=generate_id)
    book_id = Column(String(36), ForeignKey("books.id"), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    accession_number = Column(String(50), nullable=False)
    status = Column(Enum(CopyStatusEnum), nullable=False, default=CopyStatusEnum.AVAILABLE)
    purchase_date = Column(Date, nullable=True)
    price = Column(Float, nullable=True)
    condition_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="copies")
    loans = relationship("Loan", back_populates="copy")

    __table_args__ = (
        UniqueConstraint("tenant_id", "accession_number", name="unique_accession_per_tenant"),
        Index("idx_copy_book", "book_id"),
        Index("idx_copy_status", "status"),
        CheckConstraint("price IS NULL OR price >= 0", name="check_copy_price_non_negative"),
    )


class Loan(Base):
    """
    Loans table - a copy lent to a borrower.

    ``fine_amount`` is the overdue (or lost) charge; ``collected_amount`` is a
    condition/damage charge taken at the desk on return. They are independent.
    """

    __tablename__ = "loans"

    id = Column(String(36), primary_key=True, default=generate_id)
    copy_id = Column(String(36), ForeignKey("book_copies.id"), nullable=False)
    borrower_id = Column(String(64), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    issue_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(Enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.ACTIVE)
    fine_amount = Column(Float, nullable=False, default=0.0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    collected_amount = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copy = relationship("BookCopy", back_populates="loans")
    fines = relationship("Fine", back_populates="loan")

    __table_args__ = (
        Index("idx_loan_copy", "copy_id"),
        Index("idx_loan_borrower", "borrower_id"),
        Index("idx_loan_tenant_status", "tenant_id", "status"),
        Index("idx_loan_due_date", "due_date"),
        CheckConstraint("fine_amount >= 0", name="check_loan_fine_non_negative"),
        CheckConstraint("collected_amount >= 0", name="check_loan_collected_non_negative"),
    )


class Fine(Base):
    """
    Fines table - standalone charges awaiting payment.

    Only overdue returns and lost books create rows here. Condition charges
    are settled at the desk and live on the loan only.
    """

    __tablename__ = "fines"

    id = Column(String(36), primary_key=True, default=generate_id)
    loan_id = Column(String(36), ForeignKey("loans.id"), nullable=False)
    borrower_id = Column(String(64), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    amount = Column(Float, nullable=False)
    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loan = relationship("Loan", back_populates="fines")

    __table_args__ = (
        Index("idx_fine_borrower", "borrower_id"),
        Index("idx_fine_tenant_paid", "tenant_id", "paid"),
        CheckConstraint("amount > 0", name="check_fine_amount_positive"),
    )


class Borrower(Base):
    """Borrowers table - the slice of the roster directory the engine reads."""

    __tablename__ = "borrowers"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    name = Column(String(200), nullable=True)
    role = Column(Enum(BorrowerRoleEnum), nullable=False, default=BorrowerRoleEnum.STUDENT)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_borrower_tenant", "tenant_id"),)


class LibraryPolicy(Base):
    """Library policies table - per-tenant settings; NULL columns mean "use default"."""

    __tablename__ = "library_policies"

    tenant_id = Column(String(64), primary_key=True)
    loan_duration_days = Column(Integer, nullable=True)
    fine_per_day = Column(Float, nullable=True)
    max_books_per_student = Column(Integer, nullable=True)
