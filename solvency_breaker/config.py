"""
Solvency Breaker - Configuration.

============================================================
PURPOSE
============================================================
Configuration for breaker behavior, high-risk pool limits
and audit persistence.

Window defaults per category are FIXED (see types.py) and
are not configurable: auto-resync must always land on the
same known-safe parameters.

============================================================
CONFIGURATION SOURCES
============================================================
1. Defaults in this module
2. YAML file (from_yaml)
3. Environment variables, .env honoured (from_env)

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv

from .types import InvalidConfigurationError


logger = logging.getLogger(__name__)


# ============================================================
# HIGH RISK POOL LIMITS
# ============================================================

MIN_POOL_SIZE = 1_000
"""configure() requires pool_size strictly above this."""

MIN_PER_USER_LIMIT = 10
"""configure() requires per_user_limit strictly above this."""


@dataclass
class HighRiskPoolConfig:
    """
    Limits applied while degraded mode is active.
    """

    default_pool_size: int = 50_000
    """Pool size restored when a used pool is re-enabled."""

    default_per_user_limit: int = 1_000
    """Per-user epoch limit restored when a used pool is re-enabled."""

    def validate(self) -> None:
        """Raise if the defaults themselves violate the pool rules."""
        if self.default_pool_size <= self.default_per_user_limit:
            raise InvalidConfigurationError(
                "default_pool_size must exceed default_per_user_limit"
            )
        if self.default_pool_size <= MIN_POOL_SIZE:
            raise InvalidConfigurationError(
                f"default_pool_size must exceed {MIN_POOL_SIZE}"
            )
        if self.default_per_user_limit <= MIN_PER_USER_LIMIT:
            raise InvalidConfigurationError(
                f"default_per_user_limit must exceed {MIN_PER_USER_LIMIT}"
            )


# ============================================================
# BREAKER BEHAVIOR
# ============================================================

@dataclass
class BreakerConfig:
    """
    Circuit breaker behavior.
    """

    restriction_severity_pct: int = 5
    """
    How far below the floor, in percent of the floor, a
    proposed balance must fall before the acting account
    is restricted.
    """

    max_audit_events: int = 10_000
    """In-memory journal size. Older entries are dropped first."""

    def validate(self) -> None:
        if not 0 <= self.restriction_severity_pct <= 100:
            raise InvalidConfigurationError(
                "restriction_severity_pct must be within [0, 100]"
            )
        if self.max_audit_events <= 0:
            raise InvalidConfigurationError("max_audit_events must be positive")


# ============================================================
# PERSISTENCE
# ============================================================

@dataclass
class PersistenceConfig:
    """
    Audit trail persistence.
    """

    enabled: bool = False
    """Whether audit events are written to the database."""

    database_url: str = "sqlite:///solvency_breaker_audit.db"
    """SQLAlchemy URL (sync driver)."""

    echo: bool = False
    """Log SQL statements."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class SolvencyBreakerConfig:
    """
    Master configuration for the solvency breaker.
    """

    high_risk_pool: HighRiskPoolConfig = field(
        default_factory=HighRiskPoolConfig
    )
    """High-risk pool defaults."""

    breaker: BreakerConfig = field(
        default_factory=BreakerConfig
    )
    """Breaker behavior."""

    persistence: PersistenceConfig = field(
        default_factory=PersistenceConfig
    )
    """Audit persistence."""

    log_level: str = "INFO"
    """Root log level for configure_logging()."""

    def validate(self) -> "SolvencyBreakerConfig":
        """Validate all sections. Returns self for chaining."""
        self.high_risk_pool.validate()
        self.breaker.validate()
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "high_risk_pool": {
                "default_pool_size": self.high_risk_pool.default_pool_size,
                "default_per_user_limit": self.high_risk_pool.default_per_user_limit,
            },
            "breaker": {
                "restriction_severity_pct": self.breaker.restriction_severity_pct,
                "max_audit_events": self.breaker.max_audit_events,
            },
            "persistence": {
                "enabled": self.persistence.enabled,
                "database_url": self.persistence.database_url,
                "echo": self.persistence.echo,
            },
            "log_level": self.log_level,
        }

    @classmethod
    def from_env(cls) -> "SolvencyBreakerConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - SOLVENCY_POOL_SIZE
        - SOLVENCY_PER_USER_LIMIT
        - SOLVENCY_RESTRICTION_SEVERITY_PCT
        - SOLVENCY_MAX_AUDIT_EVENTS
        - SOLVENCY_PERSISTENCE_ENABLED
        - SOLVENCY_DATABASE_URL
        - LOG_LEVEL
        """
        load_dotenv()
        config = cls()

        if os.getenv("SOLVENCY_POOL_SIZE"):
            config.high_risk_pool.default_pool_size = int(os.getenv("SOLVENCY_POOL_SIZE"))
        if os.getenv("SOLVENCY_PER_USER_LIMIT"):
            config.high_risk_pool.default_per_user_limit = int(os.getenv("SOLVENCY_PER_USER_LIMIT"))

        if os.getenv("SOLVENCY_RESTRICTION_SEVERITY_PCT"):
            config.breaker.restriction_severity_pct = int(
                os.getenv("SOLVENCY_RESTRICTION_SEVERITY_PCT")
            )
        if os.getenv("SOLVENCY_MAX_AUDIT_EVENTS"):
            config.breaker.max_audit_events = int(os.getenv("SOLVENCY_MAX_AUDIT_EVENTS"))

        if os.getenv("SOLVENCY_PERSISTENCE_ENABLED"):
            config.persistence.enabled = os.getenv(
                "SOLVENCY_PERSISTENCE_ENABLED"
            ).lower() in ("1", "true", "yes")
        if os.getenv("SOLVENCY_DATABASE_URL"):
            config.persistence.database_url = os.getenv("SOLVENCY_DATABASE_URL")

        if os.getenv("LOG_LEVEL"):
            config.log_level = os.getenv("LOG_LEVEL")

        return config.validate()

    @classmethod
    def from_yaml(cls, path: Path) -> "SolvencyBreakerConfig":
        """
        Load configuration from a YAML file.

        A missing or invalid file raises.
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded solvency breaker config from {path}")
        return load_config_from_dict(data)


# ============================================================
# PRESET FACTORIES
# ============================================================

def get_default_config() -> SolvencyBreakerConfig:
    """Get default configuration."""
    return SolvencyBreakerConfig()


def get_strict_config() -> SolvencyBreakerConfig:
    """
    Get strict configuration.

    Restricts on any breach and keeps the pool tight.
    """
    config = SolvencyBreakerConfig()
    config.breaker.restriction_severity_pct = 0
    config.high_risk_pool.default_pool_size = 10_000
    config.high_risk_pool.default_per_user_limit = 250
    return config


def get_testing_config() -> SolvencyBreakerConfig:
    """
    Get testing configuration.

    Persistence off, small journal.
    NOT FOR PRODUCTION.
    """
    config = SolvencyBreakerConfig()
    config.persistence.enabled = False
    config.persistence.database_url = "sqlite://"
    config.breaker.max_audit_events = 500
    config.log_level = "DEBUG"
    return config


def load_config_from_dict(data: Dict[str, Any]) -> SolvencyBreakerConfig:
    """
    Load configuration from dictionary.

    Args:
        data: Configuration dictionary (same shape as to_dict())

    Returns:
        Validated SolvencyBreakerConfig
    """
    config = get_default_config()

    if "high_risk_pool" in data:
        hr = data["high_risk_pool"] or {}
        config.high_risk_pool.default_pool_size = int(hr.get(
            "default_pool_size",
            config.high_risk_pool.default_pool_size,
        ))
        config.high_risk_pool.default_per_user_limit = int(hr.get(
            "default_per_user_limit",
            config.high_risk_pool.default_per_user_limit,
        ))

    if "breaker" in data:
        br = data["breaker"] or {}
        config.breaker.restriction_severity_pct = int(br.get(
            "restriction_severity_pct",
            config.breaker.restriction_severity_pct,
        ))
        config.breaker.max_audit_events = int(br.get(
            "max_audit_events",
            config.breaker.max_audit_events,
        ))

    if "persistence" in data:
        ps = data["persistence"] or {}
        config.persistence.enabled = bool(ps.get("enabled", config.persistence.enabled))
        config.persistence.database_url = ps.get(
            "database_url",
            config.persistence.database_url,
        )
        config.persistence.echo = bool(ps.get("echo", config.persistence.echo))

    if "log_level" in data:
        config.log_level = str(data["log_level"])

    return config.validate()


# ============================================================
# LOGGING
# ============================================================

def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for CLI use.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
