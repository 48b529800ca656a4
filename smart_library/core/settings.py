from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class LibrarySettings(BaseModel):
    """Runtime configuration for circulation rules and the web server."""

    loan_period_days: int = Field(default=14, alias="LOAN_PERIOD_DAYS", ge=1)
    max_loan_period_days: int = Field(default=30, alias="MAX_LOAN_PERIOD_DAYS", ge=1)
    max_active_checkouts: int = Field(default=5, alias="MAX_ACTIVE_CHECKOUTS", ge=1)
    late_fee_per_day: Decimal = Field(default=Decimal("1.00"), alias="LATE_FEE_PER_DAY", ge=0)

    mongo_url: str = Field(default="mongodb://localhost:27017", alias="MONGO_URL")
    mongo_db_name: str = Field(default="smart_library_nosql", alias="MONGO_DB_NAME")
    mongo_timeout_ms: int = Field(default=5000, alias="MONGO_TIMEOUT_MS", ge=1)
    mongo_init_on_startup: bool = Field(default=True, alias="MONGO_INIT_ON_STARTUP")

    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_default: str = Field(default="1000/15minutes", alias="RATE_LIMIT_DEFAULT")
    rate_limit_auth: str = Field(default="5/15minutes", alias="RATE_LIMIT_AUTH")

    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"],
        alias="CORS_ORIGINS",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS", ge=4, le=31)
    create_schema_on_startup: bool = Field(default=True, alias="CREATE_SCHEMA_ON_STARTUP")

    model_config = {"populate_by_name": True}

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if value is None:
            return "INFO"
        return value.upper()

    @field_validator("max_loan_period_days")
    @classmethod
    def _max_not_below_default(cls, value: int, info) -> int:
        default = info.data.get("loan_period_days")
        if default is not None and value < default:
            raise ValueError("MAX_LOAN_PERIOD_DAYS must not be lower than LOAN_PERIOD_DAYS")
        return value


@lru_cache
def get_library_settings() -> LibrarySettings:
    """Load library configuration from environment variables."""
    return LibrarySettings(
        loan_period_days=int(os.getenv("LOAN_PERIOD_DAYS", "14")),
        max_loan_period_days=int(os.getenv("MAX_LOAN_PERIOD_DAYS", "30")),
        max_active_checkouts=int(os.getenv("MAX_ACTIVE_CHECKOUTS", "5")),
        late_fee_per_day=Decimal(os.getenv("LATE_FEE_PER_DAY", "1.00")),
        mongo_url=os.getenv("MONGO_URL", "mongodb://localhost:27017"),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "smart_library_nosql"),
        mongo_timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "5000")),
        mongo_init_on_startup=_as_bool(os.getenv("MONGO_INIT_ON_STARTUP"), default=True),
        rate_limit_enabled=_as_bool(os.getenv("RATE_LIMIT_ENABLED"), default=True),
        rate_limit_default=os.getenv("RATE_LIMIT_DEFAULT", "1000/15minutes"),
        rate_limit_auth=os.getenv("RATE_LIMIT_AUTH", "5/15minutes"),
        cors_origins=_as_list(
            os.getenv("CORS_ORIGINS"),
            default=["http://localhost:3000", "http://localhost:3001"],
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
        create_schema_on_startup=_as_bool(os.getenv("CREATE_SCHEMA_ON_STARTUP"), default=True),
    )
