from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Tuple


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.environ.get(name)
    if not raw:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class RefundPolicy:
    enabled: bool = True
    max_manager_refund: float = 200.0
    require_approval: bool = True
    approval_threshold: float = 500.0
    allowed_payment_methods: Tuple[str, ...] = ("cash", "card", "mobile")
    auto_approve_small_amounts: bool = True
    small_amount_threshold: float = 50.0
    time_limit: float = 24.0  # hours

    @classmethod
    def from_env(cls) -> "RefundPolicy":
        defaults = cls()
        return cls(
            enabled=_env_bool("REFUNDS_ENABLED", defaults.enabled),
            max_manager_refund=_env_float("REFUNDS_MAX_MANAGER_REFUND", defaults.max_manager_refund),
            require_approval=_env_bool("REFUNDS_REQUIRE_APPROVAL", defaults.require_approval),
            approval_threshold=_env_float("REFUNDS_APPROVAL_THRESHOLD", defaults.approval_threshold),
            allowed_payment_methods=_env_list(
                "REFUNDS_ALLOWED_PAYMENT_METHODS", defaults.allowed_payment_methods
            ),
            auto_approve_small_amounts=_env_bool(
                "REFUNDS_AUTO_APPROVE_SMALL_AMOUNTS", defaults.auto_approve_small_amounts
            ),
            small_amount_threshold=_env_float(
                "REFUNDS_SMALL_AMOUNT_THRESHOLD", defaults.small_amount_threshold
            ),
            time_limit=_env_float("REFUNDS_TIME_LIMIT_HOURS", defaults.time_limit),
        )


@dataclass(frozen=True)
class IntegrationSettings:
    cash_drawer_enabled: bool = True
    printer_enabled: bool = True
    scanner_enabled: bool = False
    sound_enabled: bool = True
    tax_rate: float = 0.0
    business_name: str = "KHH RESTAURANT"
    business_address: str = ""
    business_phone: str = ""
    health_check_interval: float = 60.0

    @classmethod
    def from_env(cls) -> "IntegrationSettings":
        defaults = cls()
        return cls(
            cash_drawer_enabled=_env_bool("CASH_DRAWER_ENABLED", defaults.cash_drawer_enabled),
            printer_enabled=_env_bool("PRINTER_ENABLED", defaults.printer_enabled),
            scanner_enabled=_env_bool("SCANNER_ENABLED", defaults.scanner_enabled),
            sound_enabled=_env_bool("SOUND_ENABLED", defaults.sound_enabled),
            tax_rate=_env_float("TAX_RATE", defaults.tax_rate),
            business_name=os.environ.get("BUSINESS_NAME", defaults.business_name),
            business_address=os.environ.get("BUSINESS_ADDRESS", defaults.business_address),
            business_phone=os.environ.get("BUSINESS_PHONE", defaults.business_phone),
            health_check_interval=_env_float(
                "HEALTH_CHECK_INTERVAL_SECONDS", defaults.health_check_interval
            ),
        )


@dataclass(frozen=True)
class Settings:
    backend_url: str = "http://localhost:3000"
    queue_db_path: str = "/data/write_queue.db"
    request_timeout: float = 30.0
    queue_max_retries: int = 5
    queue_drain_interval: float = 60.0
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    refund_policy: RefundPolicy = field(default_factory=RefundPolicy)
    integration: IntegrationSettings = field(default_factory=IntegrationSettings)


def load_settings() -> Settings:
    return Settings(
        backend_url=os.environ.get("BACKEND_URL", "http://localhost:3000"),
        queue_db_path=os.environ.get("QUEUE_DB_PATH", "/data/write_queue.db"),
        request_timeout=_env_float("REQUEST_TIMEOUT_SECONDS", 30.0),
        queue_max_retries=int(os.environ.get("QUEUE_MAX_RETRIES", "5")),
        queue_drain_interval=_env_float("QUEUE_DRAIN_INTERVAL_SECONDS", 60.0),
        allowed_origins=[
            origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
        ],
        refund_policy=RefundPolicy.from_env(),
        integration=IntegrationSettings.from_env(),
    )
