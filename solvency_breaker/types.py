"""
Solvency Breaker - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the windowed solvency monitor, the circuit
breaker and the degraded-mode withdrawal pool.

All balances, amounts and timestamps are integers.
Percentages are whole numbers in [0, 100].
Timestamps are Unix seconds SUPPLIED BY THE CALLER.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


# ============================================================
# MONITORED CATEGORIES
# ============================================================

class MonitoredCategory(str, Enum):
    """
    What a window watches.

    Exactly two categories exist. Any mapping keyed by category
    must cover both (see CATEGORY_DEFAULTS).
    """

    LIQUIDITY_POOL = "LiquidityPool"
    """Capital backing liquidity share tokens."""

    CASINO = "Casino"
    """Total treasury balance."""


@dataclass(frozen=True)
class CategoryDefaults:
    """Fixed per-category window parameters used on auto-resync."""

    window_size: int
    shift_size: int
    threshold_pct: int


DEFAULT_WINDOW_SIZE = 8 * 60 * 60
DEFAULT_SHIFT_SIZE = 2 * 60 * 60

CATEGORY_DEFAULTS: Dict[MonitoredCategory, CategoryDefaults] = {
    MonitoredCategory.LIQUIDITY_POOL: CategoryDefaults(
        window_size=DEFAULT_WINDOW_SIZE,
        shift_size=DEFAULT_SHIFT_SIZE,
        threshold_pct=20,
    ),
    MonitoredCategory.CASINO: CategoryDefaults(
        window_size=DEFAULT_WINDOW_SIZE,
        shift_size=DEFAULT_SHIFT_SIZE,
        threshold_pct=40,
    ),
}


def get_category_defaults(category: MonitoredCategory) -> CategoryDefaults:
    """
    Get the fixed defaults for a category.

    Raises:
        InvalidConfigurationError: If the category is unknown
    """
    try:
        return CATEGORY_DEFAULTS[MonitoredCategory(category)]
    except (KeyError, ValueError):
        raise InvalidConfigurationError(f"Unknown monitored category: {category!r}")


# ============================================================
# WINDOW CONFIGURATION
# ============================================================

@dataclass
class WindowConfig:
    """
    Live configuration and history of one monitoring window.

    Exists only while the category is active.
    """

    category: MonitoredCategory
    """Category this window watches."""

    window_size: int
    """Window duration in seconds."""

    shift_size: int
    """Interval duration in seconds."""

    interval_count: int
    """window_size / shift_size."""

    initial_start: int
    """When the window was enabled."""

    initial_end: int
    """initial_start + window_size. Never moves."""

    period_start: int
    """Start of the current period. Advances by whole shifts."""

    period_end: int
    """End of the current period."""

    period_start_balance: int
    """Balance the threshold is measured against."""

    threshold_pct: int
    """Maximum tolerated drop, in percent."""

    last_updated_index: int
    """
    Raw (unwrapped) interval counter of the last recorded slot.

    Compared against freshly computed raw counters, while the
    slot written is the wrapped one.
    """

    interval_balances: List[int] = field(default_factory=list)
    """Circular history of interval start balances."""

    def copy(self) -> "WindowConfig":
        """Detached copy for read-only callers."""
        return WindowConfig(
            category=self.category,
            window_size=self.window_size,
            shift_size=self.shift_size,
            interval_count=self.interval_count,
            initial_start=self.initial_start,
            initial_end=self.initial_end,
            period_start=self.period_start,
            period_end=self.period_end,
            period_start_balance=self.period_start_balance,
            threshold_pct=self.threshold_pct,
            last_updated_index=self.last_updated_index,
            interval_balances=list(self.interval_balances),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "window_size": self.window_size,
            "shift_size": self.shift_size,
            "interval_count": self.interval_count,
            "initial_start": self.initial_start,
            "initial_end": self.initial_end,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "period_start_balance": self.period_start_balance,
            "threshold_pct": self.threshold_pct,
            "last_updated_index": self.last_updated_index,
            "interval_balances": list(self.interval_balances),
        }


# ============================================================
# THRESHOLD EVALUATION
# ============================================================

@dataclass(frozen=True)
class ThresholdEvaluation:
    """Outcome of comparing a proposed balance to the allowed floor."""

    allowed_floor: int
    breached: bool
    severe: bool


# ============================================================
# AUDIT EVENTS
# ============================================================

class AuditEventType(str, Enum):
    """Kinds of events recorded for audit."""

    WINDOW_ENABLED = "WINDOW_ENABLED"
    WINDOW_DISABLED = "WINDOW_DISABLED"
    WINDOW_RESYNCED = "WINDOW_RESYNCED"
    BREACH_DETECTED = "BREACH_DETECTED"
    ACCOUNT_RESTRICTED = "ACCOUNT_RESTRICTED"
    ACCOUNT_UNRESTRICTED = "ACCOUNT_UNRESTRICTED"
    HIGH_RISK_ENABLED = "HIGH_RISK_ENABLED"
    HIGH_RISK_DISABLED = "HIGH_RISK_DISABLED"
    HIGH_RISK_CONFIGURED = "HIGH_RISK_CONFIGURED"
    HIGH_RISK_WITHDRAWAL = "HIGH_RISK_WITHDRAWAL"
    SEVERITY_CHANGED = "SEVERITY_CHANGED"


@dataclass
class AuditEvent:
    """
    One entry in the audit journal.

    Not an error. Breach and restriction events are legitimate
    outcomes that must survive for later review.
    """

    event_type: AuditEventType
    """What happened."""

    timestamp: Optional[int]
    """Caller-supplied time of the triggering call, if any."""

    category: Optional[MonitoredCategory] = None
    """Category involved, if any."""

    account: Optional[str] = None
    """Account involved, if any."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional context."""

    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When the event entered the journal (audit metadata only)."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "category": self.category.value if self.category else None,
            "account": self.account,
            "details": self.details,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass
class BreachEvent:
    """
    A detected threshold breach.

    The caller MUST abort the ledger operation that produced it.
    """

    category: MonitoredCategory
    account: str
    proposed_balance: int
    period_start_balance: int
    allowed_floor: int
    threshold_pct: int
    restriction_severity_pct: int
    restricted: bool
    timestamp: int
    high_risk_activated: bool = False
    """Whether this breach switched degraded mode on."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "account": self.account,
            "proposed_balance": self.proposed_balance,
            "period_start_balance": self.period_start_balance,
            "allowed_floor": self.allowed_floor,
            "threshold_pct": self.threshold_pct,
            "restriction_severity_pct": self.restriction_severity_pct,
            "restricted": self.restricted,
            "timestamp": self.timestamp,
            "high_risk_activated": self.high_risk_activated,
        }


# ============================================================
# DECISIONS
# ============================================================

@dataclass(frozen=True)
class CheckResult:
    """Decision returned to the ledger for a proposed balance."""

    permitted: bool
    restricted: bool
    breach: Optional[BreachEvent] = None


@dataclass(frozen=True)
class WithdrawalResult:
    """Committed high-risk withdrawal."""

    account: str
    amount: int
    epoch: int
    user_withdrawn_this_epoch: int
    pool_withdrawn_total: int
    pool_remaining: int
    timestamp: int


# ============================================================
# HIGH RISK POOL
# ============================================================

@dataclass
class UserWithdrawalRecord:
    """Per-user accounting inside the high-risk pool."""

    last_epoch: int = 0
    withdrawn_this_epoch: int = 0
    last_withdrawal_at: Optional[int] = None


@dataclass(frozen=True)
class HighRiskPoolStats:
    """Read-only view of the high-risk pool."""

    is_active: bool
    epoch: int
    pool_size: int
    per_user_limit: int
    total_withdrawn: int
    remaining: int
    users_this_epoch: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_active": self.is_active,
            "epoch": self.epoch,
            "pool_size": self.pool_size,
            "per_user_limit": self.per_user_limit,
            "total_withdrawn": self.total_withdrawn,
            "remaining": self.remaining,
            "users_this_epoch": self.users_this_epoch,
        }


# ============================================================
# ERRORS
# ============================================================

class SolvencyBreakerError(Exception):
    """Base exception for the solvency breaker."""
    pass


class InvalidConfigurationError(SolvencyBreakerError):
    """Raised when enable/configure parameters are invalid."""
    pass


class InvalidTimestampError(SolvencyBreakerError):
    """Raised when a timestamp precedes the window it refers to."""
    pass


class AlreadyActiveError(SolvencyBreakerError):
    """Raised when enabling something that is already active."""
    pass


class NotActiveError(SolvencyBreakerError):
    """Raised when using or disabling something that is inactive."""
    pass


class PoolExhaustedError(SolvencyBreakerError):
    """Raised when a withdrawal would exceed the high-risk pool."""

    def __init__(self, pool_size: int, total_withdrawn: int, amount: int):
        self.pool_size = pool_size
        self.total_withdrawn = total_withdrawn
        self.amount = amount
        super().__init__(
            f"High-risk pool exhausted: {total_withdrawn} + {amount} > {pool_size}"
        )


class UserLimitExceededError(SolvencyBreakerError):
    """Raised when a withdrawal would exceed the per-user epoch limit."""

    def __init__(self, account: str, withdrawn: int, amount: int, limit: int):
        self.account = account
        self.withdrawn = withdrawn
        self.amount = amount
        self.limit = limit
        super().__init__(
            f"Per-user limit exceeded for {account}: {withdrawn} + {amount} > {limit}"
        )


class AccountRestrictedError(SolvencyBreakerError):
    """Raised when a restricted account attempts a self-service operation."""

    def __init__(self, account: str):
        self.account = account
        super().__init__(f"Account {account} is restricted")


class AuditPersistenceError(SolvencyBreakerError):
    """Raised when an audit record cannot be persisted."""
    pass
