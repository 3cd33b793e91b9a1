"""Configuration management for the library circulation server.

Settings are read from the environment (``LIBRARY_`` prefix) and an optional
``.env`` file. Circulation business rules (loan limits, renewal limits, fine
rates, QR ownership leniency) live in a nested ``LoanPolicy`` so they can be
tuned per deployment without code changes, e.g.
``LIBRARY_LOAN_POLICY__MAX_OPEN_LOANS=8``.
"""

import enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class QRMemberMismatchPolicy(str, enum.Enum):
    """What a QR return does when none of its loans belong to the named member."""

    # Log a warning and return the loans anyway
    PROCEED = "proceed"
    # Refuse the return with MemberLoanMismatch
    REJECT = "reject"


class LoanPolicy(BaseModel):
    """Circulation rules applied by the loan engine."""

    max_open_loans: int = Field(
        default=5,
        description="Maximum number of unreturned loans a member may hold",
        ge=1,
    )

    default_loan_days: int = Field(
        default=14,
        description="Loan duration used when a checkout does not specify one",
        ge=1,
        le=365,
    )

    default_renewal_days: int = Field(
        default=7,
        description="Days added to the due date by a renewal",
        ge=1,
        le=365,
    )

    max_renewals: int = Field(
        default=2,
        description="Number of renewals allowed per loan",
        ge=0,
    )

    overdue_fine_per_day: float = Field(
        default=5.0,
        description="Fine charged per started day past the due date",
        ge=0,
    )

    damaged_fine: float = Field(
        default=100.0,
        description="Flat fine added when a copy is returned damaged",
        ge=0,
    )

    lost_fine: float = Field(
        default=500.0,
        description="Flat fine added when a copy is reported lost",
        ge=0,
    )

    qr_member_mismatch: QRMemberMismatchPolicy = Field(
        default=QRMemberMismatchPolicy.PROCEED,
        description="Behaviour of QR returns when no loan belongs to the named member",
    )

    due_soon_days: int = Field(
        default=3,
        description="Window used by the due-soon listing when none is given",
        ge=0,
    )


class ServerConfig(BaseSettings):
    """Server configuration.

    Transport, storage location, logging and the circulation policy. A
    config instance is built once by the entry point and handed to every
    component that needs it.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="Server name reported by the tool bridge",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path",
    )

    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a writer waits for the database lock",
        gt=0,
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="http",
        description="Primary transport: HTTP API or stdio tool bridge",
        pattern=r"^(stdio|http)$",
    )

    http_host: str = Field(
        default="127.0.0.1",
        description="HTTP API bind address",
    )

    http_port: int = Field(
        default=3001,
        description="HTTP API port",
        ge=1024,
        le=65535,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    # === Circulation Rules ===

    loan_policy: LoanPolicy = Field(default_factory=LoanPolicy)

    # === Validation Methods ===

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

    @field_validator("http_port")
    @classmethod
    def validate_http_port(cls, v: int) -> int:
        reserved_ports = {3306, 5432}
        if v in reserved_ports:
            raise ValueError(f"Port {v} is commonly reserved, choose another")
        return v

    # === Computed Properties ===

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """SQLAlchemy URL for the configured database file."""
        return f"sqlite:///{self.database_path}"
