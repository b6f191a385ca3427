"""
Database package for the Library Circulation MCP Server.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- The error taxonomy every repository raises (errors.py)
- Repositories for inventory, circulation, eligibility and statistics
- Adapters for the borrower roster and tenant policy (directory.py)
"""

from .accession import AccessionAllocator, CopyMetadata
from .circulation_repository import CirculationRepository, IssueRequestSchema, LoanFilterParams
from .directory import BorrowerDirectory, PolicyStore
from .eligibility_repository import EligibilityRepository
from .errors import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    PolicyError,
    RepositoryException,
    StoreError,
    TransientError,
    ValidationError,
)
from .inventory_repository import (
    BookCreateSchema,
    BookRepository,
    BookUpdateSchema,
    CopyCreateSchema,
    CopyUpdateSchema,
)
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import (
    Base,
    Book,
    BookCopy,
    Borrower,
    CopyStatusEnum,
    Fine,
    LibraryPolicy,
    Loan,
    LoanStatusEnum,
)
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)
from .stats_repository import StatsRepository

__all__ = [
    "AccessionAllocator",
    "Base",
    "BaseRepository",
    "Book",
    "BookCopy",
    "BookCreateSchema",
    "BookRepository",
    "BookUpdateSchema",
    "Borrower",
    "BorrowerDirectory",
    "CirculationRepository",
    "ConflictError",
    "CopyCreateSchema",
    "CopyMetadata",
    "CopyStatusEnum",
    "CopyUpdateSchema",
    "DatabaseManager",
    "DuplicateError",
    "EligibilityRepository",
    "Fine",
    "IssueRequestSchema",
    "LibraryPolicy",
    "Loan",
    "LoanFilterParams",
    "LoanStatusEnum",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "PolicyError",
    "PolicyStore",
    "RepositoryException",
    "StatsRepository",
    "StoreError",
    "TransientError",
    "ValidationError",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
