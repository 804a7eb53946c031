"""Application configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple
import math
import os


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings resolved from the process environment."""

    environment: str
    port: int
    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    db_pool_min: int
    db_pool_max: int
    auth0_domain: Optional[str]
    auth0_audience: Optional[str]
    auth0_issuer: Optional[str]
    jwks_cache_seconds: int
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    frontend_url: str
    cors_origins: Tuple[str, ...]
    log_level: str
    request_logging: bool
    stripe_price_ids: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def db_settings(self) -> Dict[str, object]:
        """Keyword arguments accepted by :func:`psycopg2.connect`."""

        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "connect_timeout": self.db_connect_timeout,
        }


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_list(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load :class:`AppConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    environment = (
        env_mapping.get("APP_ENV") or env_mapping.get("NODE_ENV") or "development"
    ).strip().lower()

    connect_timeout = _to_float(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5.0)
    if connect_timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")

    pool_min = max(1, _to_int(env_mapping.get("DB_POOL_MIN"), default=1))
    pool_max = max(pool_min, _to_int(env_mapping.get("DB_POOL_MAX"), default=10))

    auth0_domain = (env_mapping.get("AUTH0_DOMAIN") or "").strip() or None
    auth0_issuer = env_mapping.get("AUTH0_ISSUER") or (
        f"https://{auth0_domain}/" if auth0_domain else None
    )

    price_ids = {
        "BASIC": env_mapping.get("STRIPE_BASIC_PRICE_ID", "price_basic_monthly"),
        "PREMIUM": env_mapping.get("STRIPE_PREMIUM_PRICE_ID", "price_premium_monthly"),
        "ENTERPRISE": env_mapping.get("STRIPE_ENTERPRISE_PRICE_ID", "price_enterprise_monthly"),
    }

    return AppConfig(
        environment=environment,
        port=_to_int(env_mapping.get("PORT"), default=3000),
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "tapiceros"),
        db_user=env_mapping.get("DB_USER", "tapiceros"),
        db_password=env_mapping.get("DB_PASSWORD", "tapiceros"),
        db_connect_timeout=int(math.ceil(connect_timeout)),
        db_pool_min=pool_min,
        db_pool_max=pool_max,
        auth0_domain=auth0_domain,
        auth0_audience=env_mapping.get("AUTH0_AUDIENCE") or None,
        auth0_issuer=auth0_issuer,
        jwks_cache_seconds=max(0, _to_int(env_mapping.get("JWKS_CACHE_SECONDS"), default=3600)),
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        frontend_url=env_mapping.get("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        cors_origins=_to_list(env_mapping.get("CORS_ORIGINS"), default=("*",)),
        log_level=(env_mapping.get("LOG_LEVEL") or "info").strip().upper(),
        request_logging=_to_bool(env_mapping.get("ENABLE_REQUEST_LOGGING"), default=True),
        stripe_price_ids=price_ids,
    )


def missing_required_settings(config: AppConfig) -> List[str]:
    """Return the names of required settings that are not configured."""

    missing: List[str] = []
    if not config.auth0_domain:
        missing.append("AUTH0_DOMAIN")
    if not config.auth0_audience:
        missing.append("AUTH0_AUDIENCE")
    if not config.stripe_secret_key:
        missing.append("STRIPE_SECRET_KEY")
    if not config.stripe_webhook_secret:
        missing.append("STRIPE_WEBHOOK_SECRET")
    return missing
