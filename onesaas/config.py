"""Application configuration loaded from the environment.

Configuration is read once at startup by ``Settings.from_env()`` and then passed
around explicitly (see ``onesaas.context``). Service tiers are reference data:
they are validated against the closed set of algorithm names when the module is
loaded, so request handlers never deal with unknown capability tags.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


class AlgorithmName(str, Enum):
    """Closed set of computational capabilities a tier can unlock."""

    DATA_ANALYSIS = "dataAnalysis"
    TEXT_ANALYSIS = "textAnalysis"
    ML_PREDICTION = "mlPrediction"
    SENTIMENT_ANALYSIS = "sentimentAnalysis"
    TIME_SERIES_ANALYSIS = "timeSeriesAnalysis"
    RECOMMENDATION = "recommendation"
    LINEAR_REGRESSION = "linearRegression"


# Token and grant lifetimes
ACCESS_TOKEN_LIFETIME = timedelta(minutes=15)
REFRESH_TOKEN_LIFETIME = timedelta(days=7)
GUEST_ACCESS_DURATION = timedelta(hours=5)
TRUSTED_DEVICE_DURATION = timedelta(days=7)


@dataclass(frozen=True)
class ServiceTier:
    """Reference definition of a plan, seeded into the ``services`` table."""

    name: str
    description: str
    price: float
    allowed_algorithms: FrozenSet[AlgorithmName]
    rate_limit: int
    rate_period: int  # seconds


def _tier(name: str, description: str, price: float, algorithms: Tuple[str, ...],
          rate_limit: int, rate_period: int = 3600) -> ServiceTier:
    """Build a tier, rejecting algorithm names outside ``AlgorithmName``."""
    allowed = set()
    for algorithm in algorithms:
        try:
            allowed.add(AlgorithmName(algorithm))
        except ValueError:
            raise ConfigError(f"Tier '{name}' references unknown algorithm '{algorithm}'")
    if rate_limit < 1 or rate_period < 1:
        raise ConfigError(f"Tier '{name}' must have a positive rate budget")
    return ServiceTier(
        name=name,
        description=description,
        price=price,
        allowed_algorithms=frozenset(allowed),
        rate_limit=rate_limit,
        rate_period=rate_period,
    )


# Guest access is a role grant, not a purchasable service
GUEST_TIER = _tier(
    "Guest Access",
    "Limited access for guest users - renews every 5 hours",
    0.0,
    ("dataAnalysis", "textAnalysis"),
    rate_limit=20,
)

SERVICE_TIERS: Dict[str, ServiceTier] = {
    "BASIC": _tier(
        "Basic Plan",
        "Access to basic algorithms with standard rate limits",
        9.99,
        ("dataAnalysis", "textAnalysis"),
        rate_limit=100,
    ),
    "PRO": _tier(
        "Pro Plan",
        "Access to advanced ML and analysis algorithms",
        29.99,
        (
            "dataAnalysis",
            "textAnalysis",
            "mlPrediction",
            "sentimentAnalysis",
            "timeSeriesAnalysis",
        ),
        rate_limit=500,
    ),
    "ENTERPRISE": _tier(
        "Enterprise Plan",
        "Full access to all algorithms with highest rate limits",
        99.99,
        tuple(a.value for a in AlgorithmName),
        rate_limit=5000,
    ),
}


def parse_algorithm_names(names) -> FrozenSet[AlgorithmName]:
    """Convert stored algorithm names to enum members.

    Raises:
        ConfigError: If any name is not a known algorithm
    """
    result = set()
    for name in names or ():
        try:
            result.add(AlgorithmName(name))
        except ValueError:
            raise ConfigError(f"Unknown algorithm name '{name}'")
    return frozenset(result)


_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def _require(env: Dict[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration.

    Build with ``Settings.from_env()`` at startup; tests construct it directly.
    """

    jwt_access_secret: str = field(repr=False)
    jwt_refresh_secret: str = field(repr=False)
    encryption_key: str = field(repr=False)
    database_url: str = "sqlite+aiosqlite:///./onesaas.db"
    backend_url: str = "http://localhost:4000"
    app_name: str = "OneSaaS"
    owner_username: str = "owner"
    owner_email: str = "owner@onesaas.de"
    owner_password: Optional[str] = field(default=None, repr=False)
    email_host: Optional[str] = None
    email_port: int = 465
    email_user: Optional[str] = None
    email_password: Optional[str] = field(default=None, repr=False)
    email_from: Optional[str] = None
    email_use_tls: bool = True
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"
    testing: bool = False
    store_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if not _HEX_KEY.match(self.encryption_key):
            raise ConfigError("ENCRYPTION_KEY must be 64 hexadecimal characters (32 bytes)")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ConfigError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")

    @property
    def mail_enabled(self) -> bool:
        return bool(self.email_host and self.email_user)

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "Settings":
        """Load settings from environment variables.

        Raises:
            ConfigError: If a required variable is missing or invalid
        """
        env = dict(os.environ if env is None else env)
        cors = env.get("CORS_ORIGINS", "http://localhost:3000")
        try:
            email_port = int(env.get("EMAIL_PORT", "465"))
            store_timeout = float(env.get("STORE_TIMEOUT_SECONDS", "10"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}")

        return cls(
            jwt_access_secret=_require(env, "JWT_ACCESS_SECRET"),
            jwt_refresh_secret=_require(env, "JWT_REFRESH_SECRET"),
            encryption_key=_require(env, "ENCRYPTION_KEY"),
            database_url=env.get("DATABASE_URL") or "sqlite+aiosqlite:///./onesaas.db",
            backend_url=env.get("BACKEND_URL", "http://localhost:4000"),
            owner_username=env.get("OWNER_USERNAME", "owner"),
            owner_email=env.get("OWNER_EMAIL", "owner@onesaas.de"),
            owner_password=env.get("OWNER_PASSWORD") or None,
            email_host=env.get("EMAIL_HOST") or None,
            email_port=email_port,
            email_user=env.get("EMAIL_USER") or None,
            email_password=env.get("EMAIL_PASSWORD") or None,
            email_from=env.get("EMAIL_FROM") or env.get("EMAIL_USER") or None,
            email_use_tls=_as_bool(env.get("EMAIL_USE_TLS"), default=True),
            cors_origins=tuple(o.strip() for o in cors.split(",") if o.strip()),
            log_level=env.get("LOG_LEVEL", "INFO"),
            testing=_as_bool(env.get("ONESAAS_TESTING")),
            store_timeout_seconds=store_timeout,
        )
