"""Configuration management for the cashier service."""

import os
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError

STORE_BACKENDS = ("sqlite", "memory")


@dataclass
class Settings:
    """Runtime settings, usually built from the environment."""

    database_path: Path = field(default_factory=lambda: Path("cashier.db"))
    store_backend: str = "sqlite"
    # IANA zone name for the business day; None means the server's local zone
    timezone: Optional[str] = None
    store_timeout_seconds: float = 5.0
    ticket_code_attempts: int = 5
    bcrypt_rounds: int = 12
    seed_default_users: bool = True
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_format: str = "standard"

    def __post_init__(self):
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"Unknown store backend {self.store_backend!r}, expected one of {STORE_BACKENDS}"
            )
        if self.store_timeout_seconds <= 0:
            raise ConfigurationError("Store timeout must be positive")
        if self.ticket_code_attempts < 1:
            raise ConfigurationError("Ticket code attempts must be at least 1")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ConfigurationError("bcrypt rounds must be between 4 and 31")
        # Fail fast on a bad zone name
        self.tzinfo

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone is None:
            return datetime.now().astimezone().tzinfo
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone {self.timezone!r}") from e

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        try:
            timeout = float(os.getenv("CASHIER_STORE_TIMEOUT", "5"))
            attempts = int(os.getenv("CASHIER_CODE_ATTEMPTS", "5"))
            rounds = int(os.getenv("CASHIER_BCRYPT_ROUNDS", "12"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        origins = os.getenv("CASHIER_CORS_ORIGINS", "*")

        return cls(
            database_path=Path(os.getenv("CASHIER_DB_PATH", "cashier.db")),
            store_backend=os.getenv("CASHIER_STORE", "sqlite").lower(),
            timezone=os.getenv("CASHIER_TIMEZONE") or None,
            store_timeout_seconds=timeout,
            ticket_code_attempts=attempts,
            bcrypt_rounds=rounds,
            seed_default_users=os.getenv("CASHIER_SEED_USERS", "true").lower() == "true",
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )
