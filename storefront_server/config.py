"""Runtime configuration loaded from the environment."""

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_API_URL = "http://localhost:8080/api"


class Settings(BaseModel):
    """Storefront client settings."""

    api_url: str = Field(default=DEFAULT_API_URL, description="REST backend base URL")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    session_file: str = Field(
        default_factory=lambda: str(Path.home() / ".storefront_session.json"),
        description="Where the login session is persisted",
    )
    delivery_threshold: Decimal = Field(
        default=Decimal("500"), description="Subtotal above which delivery is free"
    )
    delivery_fee: Decimal = Field(default=Decimal("40"), description="Flat delivery fee")
    tax_rate: Decimal = Field(default=Decimal("0.05"), description="Tax rate applied to the subtotal")
    log_level: str = Field(default="INFO")


def _decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}")


def load_settings(session_file: Optional[str] = None) -> Settings:
    """Build settings from STOREFRONT_* environment variables."""
    timeout_raw = os.environ.get("STOREFRONT_TIMEOUT", "30")
    try:
        timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(f"STOREFRONT_TIMEOUT must be a number of seconds, got {timeout_raw!r}")

    values = {
        "api_url": os.environ.get("STOREFRONT_API_URL", DEFAULT_API_URL).rstrip("/"),
        "timeout": timeout,
        "delivery_threshold": _decimal_env("STOREFRONT_DELIVERY_THRESHOLD", Decimal("500")),
        "delivery_fee": _decimal_env("STOREFRONT_DELIVERY_FEE", Decimal("40")),
        "tax_rate": _decimal_env("STOREFRONT_TAX_RATE", Decimal("0.05")),
        "log_level": os.environ.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
    }
    session_file = session_file or os.environ.get("STOREFRONT_SESSION_FILE")
    if session_file:
        values["session_file"] = session_file
    return Settings(**values)
