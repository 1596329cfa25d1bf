"""
Configuration Schema (``rental_config.schema``).

Responsibility
--------------
Frozen dataclasses for every configuration section.  Each section checks
its own values in ``__post_init__`` and raises ``ValueError`` on a bad
value, so an invalid file never produces a config object.

Architecture position
---------------------
**Config layer** -- pure data definitions with ZERO I/O.  Parsed by
``rental_config.loader``; consumed by ``rental_services``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rental_modules.directory.models import UserRole


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///rental_kernel.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_seconds: int = 30
    sqlite_busy_timeout_ms: int = 5000

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError("database.pool_size must be at least 1")
        if self.max_overflow < 0:
            raise ValueError("database.max_overflow must not be negative")


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry of transient store failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    lock_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must not be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("retry.max_delay_seconds is below base_delay_seconds")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("retry.lock_timeout_seconds must be positive")


@dataclass(frozen=True)
class BillingConfig:
    invoice_due_days: int = 5
    currency_symbol: str = "KSh"
    auto_apply_credit: bool = True

    def __post_init__(self) -> None:
        if self.invoice_due_days < 0:
            raise ValueError("billing.invoice_due_days must not be negative")
        if not self.currency_symbol:
            raise ValueError("billing.currency_symbol must not be empty")


@dataclass(frozen=True)
class GatewayConfig:
    """How gateway notifications are judged and recorded."""

    payment_method: str = "mpesa"
    country_code: str = "254"
    success_statuses: tuple[str, ...] = ("completed", "success")
    success_response_codes: tuple[str, ...] = ("0",)

    def __post_init__(self) -> None:
        if not self.payment_method:
            raise ValueError("gateway.payment_method must not be empty")
        if not self.country_code.isdigit():
            raise ValueError("gateway.country_code must be digits")
        if not self.success_statuses:
            raise ValueError("gateway.success_statuses must not be empty")

    def is_success(self, status: str, response_code: str | None) -> bool:
        if status.strip().lower() not in {s.lower() for s in self.success_statuses}:
            return False
        return response_code is None or response_code in self.success_response_codes


@dataclass(frozen=True)
class LeaseConfig:
    override_roles: tuple[UserRole, ...] = (UserRole.ADMIN, UserRole.PROPERTY_MANAGER)

    def __post_init__(self) -> None:
        if not self.override_roles:
            raise ValueError("lease.override_roles must not be empty")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"logging.level is not a logging level: {self.level}")


@dataclass(frozen=True)
class RentalConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
