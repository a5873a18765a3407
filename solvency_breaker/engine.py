"""
Solvency Breaker - Engine.

============================================================
PURPOSE
============================================================
CircuitBreaker: turns a proposed post-operation balance into
a permit/deny decision and enforces the consequences.

SolvencyGuard: the single object the ledger talks to. It
OWNS the tracker, the pool, the registry and the breaker as
independent components and calls them explicitly.

============================================================
ARCHITECTURE
============================================================

                    ┌─────────────────────┐
     ledger  ─────► │    SolvencyGuard    │
                    └─────────┬───────────┘
                              │
                    ┌─────────▼───────────┐
                    │   CircuitBreaker    │
                    └─────────┬───────────┘
        ┌─────────────┬───────┴──────┬──────────────┐
        ▼             ▼              ▼              ▼
   ┌─────────┐  ┌──────────┐  ┌────────────┐  ┌─────────┐
   │ Window  │  │Threshold │  │ High Risk  │  │Restrict.│
   │ Tracker │  │Evaluator │  │    Pool    │  │Registry │
   └─────────┘  └──────────┘  └────────────┘  └─────────┘

============================================================
ON BREACH
============================================================
1. Record the breach for audit
2. Enter degraded mode (no-op if already on)
3. Disable the breached window (baseline no longer trusted;
   an operator re-enables it after review)
4. Restrict the acting account if the breach is SEVERE
5. Deny the operation

============================================================
"""

import functools
import inspect
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditJournal, AuditSubscriber
from .config import SolvencyBreakerConfig, BreakerConfig
from .high_risk_pool import HighRiskPool
from .restrictions import RestrictionRegistry
from .threshold import ThresholdEvaluator
from .types import (
    MonitoredCategory,
    WindowConfig,
    AuditEvent,
    AuditEventType,
    BreachEvent,
    CheckResult,
    WithdrawalResult,
    HighRiskPoolStats,
    get_category_defaults,
    SolvencyBreakerError,
    InvalidConfigurationError,
    AccountRestrictedError,
    AuditPersistenceError,
)
from .window_tracker import WindowTracker


logger = logging.getLogger(__name__)


BalanceProvider = Callable[[MonitoredCategory], int]


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class CircuitBreaker:
    """
    Window update + threshold check + breach enforcement.

    Lock order: category lock -> pool lock -> registry lock.
    """

    def __init__(
        self,
        tracker: WindowTracker,
        pool: HighRiskPool,
        registry: RestrictionRegistry,
        journal: AuditJournal,
        config: Optional[BreakerConfig] = None,
        evaluator: Optional[ThresholdEvaluator] = None,
    ):
        config = config or BreakerConfig()
        config.validate()

        self._tracker = tracker
        self._pool = pool
        self._registry = registry
        self._journal = journal
        self._evaluator = evaluator or ThresholdEvaluator()
        self._restriction_severity_pct = config.restriction_severity_pct
        self._lock = threading.Lock()

    @property
    def restriction_severity_pct(self) -> int:
        with self._lock:
            return self._restriction_severity_pct

    def set_restriction_severity(self, pct: int) -> None:
        """
        Set how far below the floor a breach must be to restrict.

        Raises:
            InvalidConfigurationError: pct outside [0, 100]
        """
        if not 0 <= pct <= 100:
            raise InvalidConfigurationError(
                f"restriction severity must be within [0, 100], got {pct}"
            )
        with self._lock:
            previous = self._restriction_severity_pct
            self._restriction_severity_pct = pct

        logger.info(f"Restriction severity changed: {previous}% -> {pct}%")
        self._journal.record(AuditEvent(
            event_type=AuditEventType.SEVERITY_CHANGED,
            timestamp=None,
            details={"previous": previous, "current": pct},
        ))

    def check(
        self,
        category: MonitoredCategory,
        acting_account: str,
        proposed_balance: int,
        now: int,
    ) -> CheckResult:
        """
        Decide whether a proposed balance may be committed.

        A category without an active window is not monitored and
        every proposal is permitted.

        Args:
            category: Category the operation affects
            acting_account: Account performing the operation
            proposed_balance: Category balance if the operation commits
            now: Caller-supplied current time

        Returns:
            CheckResult (permitted=False means abort the operation)

        Raises:
            InvalidConfigurationError: Unknown category
            InvalidTimestampError: now precedes the window start
        """
        lock = self._tracker.lock_for(category)
        category = MonitoredCategory(category)

        with lock:
            severity = self.restriction_severity_pct

            if not self._tracker.is_active(category):
                logger.debug(f"{category.value}: no active window, permitting")
                return CheckResult(permitted=True, restricted=False)

            self._tracker.update(category, proposed_balance, now)
            window = self._tracker.get_config(category)

            evaluation = self._evaluator.evaluate(
                window.period_start_balance,
                window.threshold_pct,
                proposed_balance,
                severity,
            )
            if not evaluation.breached:
                return CheckResult(permitted=True, restricted=False)

            with self._pool.lock, self._registry.lock:
                activate = not self._pool.is_active

                breach = BreachEvent(
                    category=category,
                    account=acting_account,
                    proposed_balance=proposed_balance,
                    period_start_balance=window.period_start_balance,
                    allowed_floor=evaluation.allowed_floor,
                    threshold_pct=window.threshold_pct,
                    restriction_severity_pct=severity,
                    restricted=evaluation.severe,
                    timestamp=now,
                    high_risk_activated=activate,
                )
                self._journal.record(AuditEvent(
                    event_type=AuditEventType.BREACH_DETECTED,
                    timestamp=now,
                    category=category,
                    account=acting_account,
                    details=breach.to_dict(),
                ))
                logger.warning(
                    f"BREACH: {category.value} proposed={proposed_balance} "
                    f"floor={evaluation.allowed_floor} "
                    f"start={window.period_start_balance} "
                    f"account={acting_account} severe={evaluation.severe}"
                )

                if activate:
                    self._pool.enable(now)
                self._tracker.disable(category, now)
                if evaluation.severe:
                    self._registry.restrict(acting_account, now, reason=f"breach:{category.value}")

        return CheckResult(permitted=False, restricted=evaluation.severe, breach=breach)


# ============================================================
# SOLVENCY GUARD (LEDGER-FACING)
# ============================================================

class SolvencyGuard:
    """
    Ledger-facing composition of the solvency breaker.

    Usage:
    ```python
    guard = SolvencyGuard(config, balance_provider=ledger.balance_of)
    guard.enable_window(MonitoredCategory.CASINO, 28800, 7200, None, 40, now=ts)

    result = guard.check_and_enforce(MonitoredCategory.CASINO, user, new_balance, now=ts)
    if not result.permitted:
        # abort the ledger operation
        ...
    if guard.high_risk_active:
        guard.withdraw_high_risk(user, amount, now=ts)
    ```
    """

    def __init__(
        self,
        config: Optional[SolvencyBreakerConfig] = None,
        balance_provider: Optional[BalanceProvider] = None,
        on_audit_event: Optional[AuditSubscriber] = None,
        repository: Optional[Any] = None,
    ):
        """
        Initialize guard.

        Args:
            config: Breaker configuration (defaults if None)
            balance_provider: Ledger function giving a category's current balance
            on_audit_event: Subscriber for dispatched audit events
            repository: AuditRepository for durable audit records. Built from
                config.persistence when omitted and persistence is enabled.
        """
        self._config = (config or SolvencyBreakerConfig()).validate()
        self._balance_provider = balance_provider

        self._journal = AuditJournal(self._config.breaker.max_audit_events)
        self._tracker = WindowTracker(on_event=self._journal.record)
        self._pool = HighRiskPool(self._config.high_risk_pool, on_event=self._journal.record)
        self._registry = RestrictionRegistry(on_event=self._journal.record)
        self._breaker = CircuitBreaker(
            tracker=self._tracker,
            pool=self._pool,
            registry=self._registry,
            journal=self._journal,
            config=self._config.breaker,
        )

        if repository is None and self._config.persistence.enabled:
            from .repository import AuditRepository
            repository = AuditRepository.from_config(self._config.persistence)
        self._repository = repository

        if on_audit_event:
            self._journal.subscribe(on_audit_event)
        if repository is not None:
            self._journal.subscribe(repository.save_audit_event)

        logger.info(
            f"SolvencyGuard initialized | severity={self._config.breaker.restriction_severity_pct}% "
            f"persistence={repository is not None}"
        )

    # --------------------------------------------------------
    # COMPONENTS
    # --------------------------------------------------------

    @property
    def tracker(self) -> WindowTracker:
        return self._tracker

    @property
    def pool(self) -> HighRiskPool:
        return self._pool

    @property
    def registry(self) -> RestrictionRegistry:
        return self._registry

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def journal(self) -> AuditJournal:
        return self._journal

    @property
    def high_risk_active(self) -> bool:
        return self._pool.is_active

    # --------------------------------------------------------
    # WINDOWS
    # --------------------------------------------------------

    def enable_window(
        self,
        category: MonitoredCategory,
        window_size: Optional[int] = None,
        shift_size: Optional[int] = None,
        starting_balance: Optional[int] = None,
        threshold_pct: Optional[int] = None,
        *,
        now: int,
    ) -> WindowConfig:
        """
        Start monitoring a category.

        Omitted sizes and threshold fall back to the category
        defaults. An omitted starting balance is read from the
        ledger's balance provider.
        """
        defaults = get_category_defaults(category)
        if starting_balance is None:
            if self._balance_provider is None:
                raise InvalidConfigurationError(
                    "starting_balance required when no balance provider is set"
                )
            starting_balance = self._balance_provider(MonitoredCategory(category))

        config = self._tracker.enable(
            category,
            defaults.window_size if window_size is None else window_size,
            defaults.shift_size if shift_size is None else shift_size,
            starting_balance,
            defaults.threshold_pct if threshold_pct is None else threshold_pct,
            now,
        )
        self._dispatch()
        return config

    def disable_window(self, category: MonitoredCategory, now: Optional[int] = None) -> None:
        self._tracker.disable(category, now)
        self._dispatch()

    # --------------------------------------------------------
    # DECISIONS
    # --------------------------------------------------------

    def check_and_enforce(
        self,
        category: MonitoredCategory,
        account: str,
        proposed_balance: int,
        now: int,
    ) -> CheckResult:
        """
        Check a proposed balance before the ledger commits.

        Returns:
            CheckResult. permitted=False: abort the operation.
        """
        result = self._breaker.check(category, account, proposed_balance, now)
        self._dispatch()
        return result

    def withdraw_high_risk(self, account: str, amount: int, now: int) -> WithdrawalResult:
        """
        Authorize a withdrawal against the degraded-mode limits.

        Raises:
            NotActiveError, PoolExhaustedError, UserLimitExceededError
        """
        result = self._pool.withdraw(account, amount, now)
        self._dispatch()
        return result

    # --------------------------------------------------------
    # RESTRICTIONS
    # --------------------------------------------------------

    def is_restricted(self, account: str) -> bool:
        return self._registry.is_restricted(account)

    def restrict(self, account: str, now: Optional[int] = None) -> bool:
        changed = self._registry.restrict(account, now)
        self._dispatch()
        return changed

    def unrestrict(self, account: str, now: Optional[int] = None) -> bool:
        changed = self._registry.unrestrict(account, now)
        self._dispatch()
        return changed

    def ensure_not_restricted(self, account: str) -> None:
        """
        Raises:
            AccountRestrictedError: The account is restricted
        """
        if self._registry.is_restricted(account):
            raise AccountRestrictedError(account)

    # --------------------------------------------------------
    # HIGH RISK MODE
    # --------------------------------------------------------

    def enable_high_risk_mode(self, now: Optional[int] = None) -> int:
        epoch = self._pool.enable(now)
        self._dispatch()
        return epoch

    def disable_high_risk_mode(self, now: Optional[int] = None) -> None:
        self._pool.disable(now)
        self._dispatch()

    def configure_high_risk_pool(self, pool_size: int, per_user_limit: int) -> None:
        self._pool.configure(pool_size, per_user_limit)
        self._dispatch()

    def set_restriction_severity(self, pct: int) -> None:
        self._breaker.set_restriction_severity(pct)
        self._dispatch()

    # --------------------------------------------------------
    # INTROSPECTION (READ ONLY)
    # --------------------------------------------------------

    def get_window_config(self, category: MonitoredCategory) -> Optional[WindowConfig]:
        return self._tracker.get_config(category)

    def get_high_risk_pool_stats(self) -> HighRiskPoolStats:
        return self._pool.get_stats()

    def get_restricted_accounts(self) -> List[str]:
        return self._registry.list_restricted()

    def get_audit_events(
        self,
        event_type: Optional[AuditEventType] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        return self._journal.events(event_type, limit)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot for dashboards and audits."""
        windows = {}
        for category in MonitoredCategory:
            config = self._tracker.get_config(category)
            windows[category.value] = config.to_dict() if config else None

        return {
            "windows": windows,
            "high_risk_pool": self._pool.get_stats().to_dict(),
            "restricted_accounts": len(self._registry),
            "restriction_severity_pct": self._breaker.restriction_severity_pct,
            "audit_events": len(self._journal),
            "audit_pending": self._journal.pending_count,
        }

    # --------------------------------------------------------
    # AUDIT DELIVERY
    # --------------------------------------------------------

    def flush_audit(self) -> int:
        """
        Deliver pending audit events.

        Raises:
            AuditPersistenceError: The repository rejected an event
        """
        return self._journal.dispatch_pending()

    def _dispatch(self) -> None:
        """Deliver audit events after a decision without masking it."""
        try:
            self._journal.dispatch_pending()
        except AuditPersistenceError as e:
            logger.error(
                f"Audit persistence failed, {self._journal.pending_count} event(s) "
                f"kept pending: {e}"
            )


# ============================================================
# SINGLETON ACCESS
# ============================================================

_guard: Optional[SolvencyGuard] = None


def get_guard() -> SolvencyGuard:
    """
    Get the global SolvencyGuard instance.

    Raises:
        SolvencyBreakerError: If not initialized
    """
    if _guard is None:
        raise SolvencyBreakerError("SolvencyGuard not initialized")
    return _guard


def init_guard(
    config: Optional[SolvencyBreakerConfig] = None,
    balance_provider: Optional[BalanceProvider] = None,
    on_audit_event: Optional[AuditSubscriber] = None,
    repository: Optional[Any] = None,
) -> SolvencyGuard:
    """Initialize the global SolvencyGuard instance."""
    global _guard

    if _guard is not None:
        logger.warning("SolvencyGuard already initialized, replacing")

    _guard = SolvencyGuard(
        config=config,
        balance_provider=balance_provider,
        on_audit_event=on_audit_event,
        repository=repository,
    )
    return _guard


# ============================================================
# DECORATOR FOR SELF-SERVICE OPERATIONS
# ============================================================

def require_not_restricted(account_param: str = "account"):
    """
    Decorator rejecting calls made for a restricted account.

    Usage:
    ```python
    @require_not_restricted("user")
    def deposit(self, user, amount):
        ...
    ```
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            bound = signature.bind(*args, **kwargs)
            get_guard().ensure_not_restricted(bound.arguments[account_param])
            return func(*args, **kwargs)
        return wrapper
    return decorator
