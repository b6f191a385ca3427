"""Test configuration and fixtures for the Library Circulation MCP Server.

1. Isolated databases - each test gets its own SQLite file
2. Configuration overrides - a test ServerConfig installed as the global config
3. A frozen clock - circulation code reads "now" from an injectable clock
4. Seeded directory data - borrowers and a library policy for the test tenant
"""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest
from sqlalchemy.orm import Session

from library_circulation_mcp.config import ServerConfig, reset_config, set_config
from library_circulation_mcp.database.circulation_repository import (
    CirculationRepository,
    IssueRequestSchema,
)
from library_circulation_mcp.database.inventory_repository import (
    BookCreateSchema,
    BookRepository,
    CopyCreateSchema,
)
from library_circulation_mcp.database.schema import Borrower, LibraryPolicy
from library_circulation_mcp.database.session import DatabaseManager, reset_db_manager

TENANT = "school_001"
OTHER_TENANT = "school_002"


def pytest_configure(config):
    logfire.configure(send_to_logfire=False, console=False)


class FrozenClock:
    """Callable returning a fixed "now" that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# === Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_circulation.db"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[ServerConfig, None, None]:
    """Install a test configuration as the global config."""
    reset_config()
    config = ServerConfig(
        server_name="test-library-circulation",
        server_version="0.0.1-test",
        database_path=test_db_path,
        debug=True,
        log_level="DEBUG",
        logfire_enabled=False,
    )
    set_config(config)

    yield config

    reset_config()


@pytest.fixture
def db_manager(test_config: ServerConfig) -> Generator[DatabaseManager, None, None]:
    """A file-backed database with the schema created."""
    manager = DatabaseManager(test_config.get_database_url())
    manager.init_database()

    yield manager

    manager.close()
    reset_db_manager()


@pytest.fixture
def test_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 10, 9, 0, 0))


# === Directory Fixtures ===


@pytest.fixture
def borrowers(test_session: Session) -> list[str]:
    """Active students, one inactive student, and a student of another tenant."""
    rows = [
        Borrower(id="student_001", tenant_id=TENANT, name="Ada", is_active=True),
        Borrower(id="student_002", tenant_id=TENANT, name="Grace", is_active=True),
        Borrower(id="student_003", tenant_id=TENANT, name="Alan", is_active=True),
        Borrower(id="inactive_001", tenant_id=TENANT, name="Former", is_active=False),
        Borrower(id="student_900", tenant_id=OTHER_TENANT, name="Elsewhere", is_active=True),
    ]
    test_session.add_all(rows)
    test_session.commit()
    return [row.id for row in rows]


@pytest.fixture
def set_policy(test_session: Session):
    """Write (or overwrite) the library policy of a tenant."""

    def _set_policy(tenant_id: str = TENANT, **values) -> None:
        policy = test_session.get(LibraryPolicy, tenant_id)
        if policy is None:
            policy = LibraryPolicy(tenant_id=tenant_id)
            test_session.add(policy)
        for name, value in values.items():
            setattr(policy, name, value)
        test_session.commit()

    return _set_policy


# === Repository Fixtures ===


@pytest.fixture
def book_repo(test_session: Session) -> BookRepository:
    return BookRepository(test_session, TENANT)


@pytest.fixture
def circulation(test_session: Session, clock: FrozenClock) -> CirculationRepository:
    return CirculationRepository(test_session, TENANT, clock=clock)


@pytest.fixture
def stocked_book(book_repo: BookRepository):
    """A book with five available copies priced at $20.00."""
    book = book_repo.create_book(
        BookCreateSchema(title="The Hobbit", author="J.R.R. Tolkien", isbn="9780261102217")
    )
    copies = book_repo.create_copies(book.id, CopyCreateSchema(count=5, price=20.0))
    return book, copies


@pytest.fixture
def issue(circulation: CirculationRepository):
    """Issue a copy to a borrower and return the loan."""

    def _issue(copy_id: str, borrower_id: str = "student_001", **kwargs):
        return circulation.issue_book(
            IssueRequestSchema(copy_id=copy_id, borrower_id=borrower_id, **kwargs)
        ).loan

    return _issue


# === Tool Fixtures ===


@pytest.fixture
def mock_get_session(test_session: Session, monkeypatch) -> Session:
    """Make every tool module use the test session."""

    @contextmanager
    def _mock_get_session():
        yield test_session

    for module in ("inventory", "circulation", "eligibility", "reports"):
        monkeypatch.setattr(
            f"library_circulation_mcp.tools.{module}.get_session", _mock_get_session
        )

    return test_session
