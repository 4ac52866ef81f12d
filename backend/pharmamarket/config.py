# backend/pharmamarket/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pharmamarket.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Platform fallbacks when no category in the ancestry chain sets a rate.
    # Rates are basis points: 1000 = 10%.
    DEFAULT_COMMISSION_RATE_BPS = int(os.environ.get("DEFAULT_COMMISSION_RATE_BPS", "0"))
    DEFAULT_VAT_RATE_BPS = int(os.environ.get("DEFAULT_VAT_RATE_BPS", "2000"))
    DEFAULT_WITHHOLDING_TAX_RATE_BPS = int(os.environ.get("DEFAULT_WITHHOLDING_TAX_RATE_BPS", "0"))

    # Shipping
    CARRIER_PROVIDER = os.environ.get("CARRIER_PROVIDER", "fake")
    CARRIER_TIMEOUT_SECONDS = float(os.environ.get("CARRIER_TIMEOUT_SECONDS", "10"))
    CARRIER_CREDENTIALS = {
        provider: {
            "endpoint": os.environ.get(f"{provider.upper()}_API_URL", ""),
            "account_code": os.environ.get(f"{provider.upper()}_ACCOUNT_CODE", ""),
            "secret": os.environ.get(f"{provider.upper()}_SECRET", ""),
        }
        for provider in ("aras", "mng", "hepsijet")
    }
    ORDER_AUTO_DELIVER_ON_TRACKING = _env_bool("ORDER_AUTO_DELIVER_ON_TRACKING", True)


@dataclass(frozen=True)
class MarketplaceSettings:
    """
    Explicit configuration value handed to the marketplace components.

    Built once from the Flask config in create_app() and stored on
    app.extensions["marketplace"]; services accept it (or the pieces they
    need) as keyword arguments so tests can inject their own.
    """
    default_commission_rate_bps: int = 0
    default_vat_rate_bps: int = 2000
    default_withholding_tax_rate_bps: int = 0
    carrier_provider: str = "fake"
    carrier_timeout_seconds: float = 10.0
    carrier_credentials: dict = field(default_factory=dict)
    auto_deliver_on_tracking: bool = True

    @classmethod
    def from_mapping(cls, config) -> "MarketplaceSettings":
        return cls(
            default_commission_rate_bps=int(config.get("DEFAULT_COMMISSION_RATE_BPS", 0)),
            default_vat_rate_bps=int(config.get("DEFAULT_VAT_RATE_BPS", 2000)),
            default_withholding_tax_rate_bps=int(config.get("DEFAULT_WITHHOLDING_TAX_RATE_BPS", 0)),
            carrier_provider=config.get("CARRIER_PROVIDER", "fake"),
            carrier_timeout_seconds=float(config.get("CARRIER_TIMEOUT_SECONDS", 10)),
            carrier_credentials=dict(config.get("CARRIER_CREDENTIALS") or {}),
            auto_deliver_on_tracking=bool(config.get("ORDER_AUTO_DELIVER_ON_TRACKING", True)),
        )


def get_settings() -> MarketplaceSettings:
    """Settings of the current app (falls back to defaults outside create_app)."""
    from flask import current_app

    return current_app.extensions.get("marketplace") or MarketplaceSettings.from_mapping(current_app.config)
