from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_DATABASE_URL = "sqlite:///./eventfund.db"
DEFAULT_API_VERSION = "2022-09-01"


def _env(name: str) -> Optional[str]:
    val = os.environ.get(name)
    if val is None:
        return None
    val = val.strip()
    return val or None


def _split(val: Optional[str]) -> Tuple[str, ...]:
    if not val:
        return ()
    return tuple(p.strip() for p in val.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # gateway credentials; validated per request, not at startup
    cashfree_app_id: Optional[str] = None
    cashfree_secret_key: Optional[str] = None
    cashfree_api_url: Optional[str] = None
    cashfree_api_version: str = DEFAULT_API_VERSION
    cashfree_mode: str = "production"
    app_url: Optional[str] = None

    database_url: str = DEFAULT_DATABASE_URL
    redis_url: Optional[str] = None

    cors_origins: Tuple[str, ...] = ("*",)
    admin_identities: Optional[str] = None
    access_policy_file: Optional[str] = None
    identity_header: str = "x-user-email"

    pending_expiry_seconds: int = 24 * 3600
    gateway_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    order_currency: str = "INR"
    placeholder_phone: str = "9999999999"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            cashfree_app_id=_env("CASHFREE_APP_ID"),
            cashfree_secret_key=_env("CASHFREE_SECRET_KEY"),
            cashfree_api_url=_env("CASHFREE_API_URL"),
            cashfree_api_version=(
                _env("CASHFREE_API_VERSION") or DEFAULT_API_VERSION
            ),
            cashfree_mode=_env("CASHFREE_MODE") or "production",
            app_url=_env("APP_URL"),
            database_url=_env("DATABASE_URL") or DEFAULT_DATABASE_URL,
            redis_url=_env("REDIS_URL"),
            cors_origins=_split(_env("CORS_ORIGINS")) or ("*",),
            admin_identities=_env("ADMIN_IDENTITIES"),
            access_policy_file=_env("ACCESS_POLICY_FILE"),
            identity_header=(
                _env("IDENTITY_HEADER") or "x-user-email"
            ).lower(),
            pending_expiry_seconds=int(
                _env("PENDING_EXPIRY_SECONDS") or 24 * 3600
            ),
            gateway_timeout_seconds=float(
                _env("GATEWAY_TIMEOUT_SECONDS") or 10.0
            ),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )

    def missing_gateway_config(self) -> Tuple[str, ...]:
        """Names of the env vars the order handler needs but doesn't have."""
        required = {
            "CASHFREE_APP_ID": self.cashfree_app_id,
            "CASHFREE_SECRET_KEY": self.cashfree_secret_key,
            "CASHFREE_API_URL": self.cashfree_api_url,
            "APP_URL": self.app_url,
        }
        return tuple(k for k, v in required.items() if not v)

    @property
    def return_url(self) -> str:
        # {order_id} is substituted by the gateway on redirect
        base = (self.app_url or "").rstrip("/")
        return f"{base}/payment-status?order_id={{order_id}}"
