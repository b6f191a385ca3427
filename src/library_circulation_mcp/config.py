"""Configuration management for the Library Circulation MCP Server.

Settings are loaded from the environment (prefix ``LIBRARY_CIRCULATION_``)
or a ``.env`` file and validated with Pydantic v2. Besides server metadata
this holds the defaults the engine falls back to when a tenant has no
library policy configured, and the tuning knobs of the accession allocator.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Library circulation server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="MCP server name used in protocol handshake",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    # === Library Policy Defaults ===
    # Used when the policy store has no settings for a tenant.

    default_loan_duration_days: int = Field(
        default=14,
        description="Loan length applied when a tenant has no policy",
        ge=1,
        le=365,
    )

    default_fine_per_day: float = Field(
        default=0.50,
        description="Overdue fine per day applied when a tenant has no policy",
        ge=0.0,
    )

    default_max_books_per_student: int = Field(
        default=3,
        description="Concurrent loan limit applied when a tenant has no policy",
        ge=1,
    )

    eligibility_max_books: int = Field(
        default=3,
        description=(
            "Loan limit used by the eligibility check. Independent of the tenant "
            "policy value that issue_book enforces."
        ),
        ge=1,
    )

    eligibility_compare_paths: bool = Field(
        default=False,
        description=(
            "Run the fallback eligibility computation next to the aggregate one "
            "and log when their verdicts disagree"
        ),
    )

    default_processing_fee: float = Field(
        default=5.0,
        description="Processing fee added to the copy price when a book is lost",
        ge=0.0,
    )

    # === Accession Allocator ===

    accession_prefix: str = Field(
        default="LIB",
        description="Prefix of generated accession numbers",
        pattern=r"^[A-Z]{2,8}$",
    )

    accession_width: int = Field(
        default=6,
        description="Zero-padded width of the numeric accession segment",
        ge=4,
        le=12,
    )

    allocation_max_retries: int = Field(
        default=3,
        description="Batch insert attempts before allocation is reported as exhausted",
        ge=1,
        le=10,
    )

    allocation_backoff_ms: int = Field(
        default=100,
        description="Linear backoff step between allocation attempts",
        ge=0,
    )

    max_copies_per_batch: int = Field(
        default=500,
        description="Upper bound on copies created in one request",
        ge=1,
    )

    # === Development / Observability ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    logfire_enabled: bool = Field(
        default=True,
        description="Configure logfire tracing at startup",
    )

    logfire_send: bool = Field(
        default=False,
        description="Ship spans to the Logfire backend (requires LOGFIRE_TOKEN)",
    )

    logfire_console: bool = Field(
        default=False,
        description="Echo spans to the console",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug or self.log_level == "DEBUG"

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = ServerConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def set_config(config: ServerConfig) -> None:
    """Install an explicit configuration (tests and embedding callers)."""
    _ConfigStore._instance = config  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration so the next get_config() re-reads the environment."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
