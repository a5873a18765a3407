"""
Solvency Breaker - Package.

============================================================
                    CRITICAL PRINCIPLE
============================================================

    "A steep drop in pooled balance is an exploit until an
     operator has reviewed it."

    The breaker never halts the ledger. It denies the
    offending operation, throttles withdrawals and restricts
    the account that caused a disproportionate drop.

============================================================
                       COMPONENTS
============================================================

WindowTracker:
    Sliding window of interval start balances per category.

ThresholdEvaluator:
    Floor = start balance * (100 - threshold) / 100.
    Proposed balance at or below the floor is a breach.

CircuitBreaker:
    Update window -> evaluate -> on breach: degraded mode,
    disable window, restrict account if severe.

HighRiskPool:
    Global and per-user withdrawal caps while degraded.

RestrictionRegistry:
    Accounts barred from self-service operations.

============================================================
                        USAGE
============================================================

```python
from solvency_breaker import (
    MonitoredCategory,
    SolvencyGuard,
    SolvencyBreakerConfig,
)

guard = SolvencyGuard(SolvencyBreakerConfig.from_env())
guard.enable_window(MonitoredCategory.CASINO, 28800, 7200, 1_000_000, 40, now=ts)

result = guard.check_and_enforce(MonitoredCategory.CASINO, user, balance_after, now=ts)
if not result.permitted:
    # abort the ledger operation
    ...
```

============================================================
"""

# Types
from .types import (
    MonitoredCategory,
    CategoryDefaults,
    CATEGORY_DEFAULTS,
    DEFAULT_WINDOW_SIZE,
    DEFAULT_SHIFT_SIZE,
    get_category_defaults,
    WindowConfig,
    ThresholdEvaluation,
    AuditEventType,
    AuditEvent,
    BreachEvent,
    CheckResult,
    WithdrawalResult,
    UserWithdrawalRecord,
    HighRiskPoolStats,
    SolvencyBreakerError,
    InvalidConfigurationError,
    InvalidTimestampError,
    AlreadyActiveError,
    NotActiveError,
    PoolExhaustedError,
    UserLimitExceededError,
    AccountRestrictedError,
    AuditPersistenceError,
)

# Configuration
from .config import (
    MIN_POOL_SIZE,
    MIN_PER_USER_LIMIT,
    HighRiskPoolConfig,
    BreakerConfig,
    PersistenceConfig,
    SolvencyBreakerConfig,
    get_default_config,
    get_strict_config,
    get_testing_config,
    load_config_from_dict,
    configure_logging,
)

# Components
from .window_tracker import WindowTracker
from .threshold import ThresholdEvaluator
from .high_risk_pool import HighRiskPool
from .restrictions import RestrictionRegistry
from .audit import AuditJournal

# Engine
from .engine import (
    CircuitBreaker,
    SolvencyGuard,
    get_guard,
    init_guard,
    require_not_restricted,
)

# Persistence
from .repository import AuditRepository
from .models import (
    AuditEventModel,
    BreachEventModel,
    HighRiskWithdrawalModel,
)


__all__ = [
    # Types
    "MonitoredCategory",
    "CategoryDefaults",
    "CATEGORY_DEFAULTS",
    "DEFAULT_WINDOW_SIZE",
    "DEFAULT_SHIFT_SIZE",
    "get_category_defaults",
    "WindowConfig",
    "ThresholdEvaluation",
    "AuditEventType",
    "AuditEvent",
    "BreachEvent",
    "CheckResult",
    "WithdrawalResult",
    "UserWithdrawalRecord",
    "HighRiskPoolStats",
    "SolvencyBreakerError",
    "InvalidConfigurationError",
    "InvalidTimestampError",
    "AlreadyActiveError",
    "NotActiveError",
    "PoolExhaustedError",
    "UserLimitExceededError",
    "AccountRestrictedError",
    "AuditPersistenceError",
    # Configuration
    "MIN_POOL_SIZE",
    "MIN_PER_USER_LIMIT",
    "HighRiskPoolConfig",
    "BreakerConfig",
    "PersistenceConfig",
    "SolvencyBreakerConfig",
    "get_default_config",
    "get_strict_config",
    "get_testing_config",
    "load_config_from_dict",
    "configure_logging",
    # Components
    "WindowTracker",
    "ThresholdEvaluator",
    "HighRiskPool",
    "RestrictionRegistry",
    "AuditJournal",
    # Engine
    "CircuitBreaker",
    "SolvencyGuard",
    "get_guard",
    "init_guard",
    "require_not_restricted",
    # Persistence
    "AuditRepository",
    "AuditEventModel",
    "BreachEventModel",
    "HighRiskWithdrawalModel",
]
