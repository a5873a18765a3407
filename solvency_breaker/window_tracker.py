"""
Solvency Breaker - Window Tracker.

============================================================
PURPOSE
============================================================
Owns one sliding monitoring window per category and keeps
its circular history of interval start balances current as
time passes.

============================================================
UPDATE ALGORITHM
============================================================
Called with (category, proposed_balance, now) before every
threshold check:

1. Staleness pre-check: now >= initial_end + shift_size.
   shifts_needed = (now - period_end) // shift_size

2. shifts_needed >= interval_count  (TOTAL STALENESS)
   A whole window elapsed unobserved. The proposed balance
   is NOT trusted as a baseline. The oldest recorded slot
   (index 0) is, and the window is re-enabled from scratch
   with the category defaults.

3. 0 < shifts_needed < interval_count  (CATCH-UP)
   Period markers move forward by whole shifts. The new
   period start balance is read from slot
   (last_updated_index + shifts_needed) % interval_count,
   THEN every skipped slot is backfilled with the proposed
   balance. No true reading exists for skipped intervals,
   the current proposal stands in for all of them.

4. raw_index = (now - initial_start) // shift_size

5. raw_index != last_updated_index:
   slot[raw_index % interval_count] = proposed_balance
   last_updated_index = raw_index   (raw, NOT wrapped)

The stored index is an unbounded counter compared against
fresh unbounded counters, while the slot written is the
wrapped one. Python integers do not overflow, so the
comparison stays exact for any window age.

============================================================
THREAD SAFETY
============================================================
One re-entrant lock per category. Every read-modify-write
sequence runs under it. Callers composing several calls
(the circuit breaker) hold lock_for(category) across them.

============================================================
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .types import (
    MonitoredCategory,
    WindowConfig,
    AuditEvent,
    AuditEventType,
    get_category_defaults,
    InvalidConfigurationError,
    InvalidTimestampError,
    AlreadyActiveError,
    NotActiveError,
)


logger = logging.getLogger(__name__)


OnAuditEventCallback = Callable[[AuditEvent], None]


# ============================================================
# WINDOW TRACKER
# ============================================================

class WindowTracker:
    """
    Sliding-window balance tracker, one window per category.

    Usage:
    ```python
    tracker = WindowTracker()
    tracker.enable(MonitoredCategory.CASINO, 28800, 7200, 100_000, 40, now=ts)

    tracker.update(MonitoredCategory.CASINO, proposed_balance, now=ts + 60)
    config = tracker.get_config(MonitoredCategory.CASINO)
    ```
    """

    def __init__(self, on_event: Optional[OnAuditEventCallback] = None):
        """
        Initialize tracker.

        Args:
            on_event: Receives lifecycle events (enable, disable, resync)
        """
        self._configs: Dict[MonitoredCategory, WindowConfig] = {}
        self._locks: Dict[MonitoredCategory, threading.RLock] = {
            category: threading.RLock() for category in MonitoredCategory
        }
        self._on_event = on_event

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    def lock_for(self, category: MonitoredCategory) -> threading.RLock:
        """Get the lock guarding a category's window."""
        try:
            return self._locks[MonitoredCategory(category)]
        except (KeyError, ValueError):
            raise InvalidConfigurationError(f"Unknown monitored category: {category!r}")

    def is_active(self, category: MonitoredCategory) -> bool:
        """Check whether a window is configured for the category."""
        with self.lock_for(category):
            return MonitoredCategory(category) in self._configs

    def active_categories(self) -> List[MonitoredCategory]:
        """Get categories with an active window."""
        return [c for c in MonitoredCategory if self.is_active(c)]

    def get_config(self, category: MonitoredCategory) -> Optional[WindowConfig]:
        """
        Get a detached copy of the category's window.

        Returns:
            WindowConfig copy, or None if the category is inactive
        """
        with self.lock_for(category):
            config = self._configs.get(MonitoredCategory(category))
            return config.copy() if config else None

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    def enable(
        self,
        category: MonitoredCategory,
        window_size: int,
        shift_size: int,
        starting_balance: int,
        threshold_pct: int,
        now: int,
    ) -> WindowConfig:
        """
        Start monitoring a category.

        Args:
            category: Category to monitor
            window_size: Window duration in seconds
            shift_size: Interval duration in seconds
            starting_balance: Balance seeding every history slot
            threshold_pct: Maximum tolerated drop in percent
            now: Caller-supplied current time

        Returns:
            Copy of the created WindowConfig

        Raises:
            InvalidConfigurationError: Parameters violate window rules
            AlreadyActiveError: Category already has a window
        """
        _validate_window(window_size, shift_size, starting_balance, threshold_pct)

        with self.lock_for(category):
            category = MonitoredCategory(category)
            if category in self._configs:
                raise AlreadyActiveError(f"Window already active for {category.value}")

            interval_count = window_size // shift_size
            config = WindowConfig(
                category=category,
                window_size=window_size,
                shift_size=shift_size,
                interval_count=interval_count,
                initial_start=now,
                initial_end=now + window_size,
                period_start=now,
                period_end=now + window_size,
                period_start_balance=starting_balance,
                threshold_pct=threshold_pct,
                last_updated_index=0,
                interval_balances=[starting_balance] * interval_count,
            )
            self._configs[category] = config

            logger.info(
                f"Window enabled: {category.value} | window={window_size}s "
                f"shift={shift_size}s intervals={interval_count} "
                f"balance={starting_balance} threshold={threshold_pct}%"
            )
            self._emit(AuditEvent(
                event_type=AuditEventType.WINDOW_ENABLED,
                timestamp=now,
                category=category,
                details=config.to_dict(),
            ))
            return config.copy()

    def disable(self, category: MonitoredCategory, now: Optional[int] = None) -> None:
        """
        Stop monitoring a category and drop its history.

        Args:
            category: Category to stop monitoring
            now: Caller-supplied time recorded on the audit event

        Raises:
            NotActiveError: Category has no window
        """
        with self.lock_for(category):
            category = MonitoredCategory(category)
            config = self._configs.pop(category, None)
            if config is None:
                raise NotActiveError(f"No active window for {category.value}")

            logger.info(f"Window disabled: {category.value}")
            self._emit(AuditEvent(
                event_type=AuditEventType.WINDOW_DISABLED,
                timestamp=now,
                category=category,
                details={"period_start_balance": config.period_start_balance},
            ))

    # --------------------------------------------------------
    # UPDATE
    # --------------------------------------------------------

    def update(
        self,
        category: MonitoredCategory,
        proposed_balance: int,
        now: int,
    ) -> None:
        """
        Advance the window to `now` and record the proposed balance.

        Raises:
            NotActiveError: Category has no window
            InvalidTimestampError: now precedes the window start
        """
        with self.lock_for(category):
            config = self._require(category)

            if now < config.initial_start:
                raise InvalidTimestampError(
                    f"Timestamp {now} precedes window start {config.initial_start} "
                    f"for {config.category.value}"
                )

            if now >= config.initial_end + config.shift_size:
                shifts_needed = (now - config.period_end) // config.shift_size

                if shifts_needed >= config.interval_count:
                    self._resync(config, now)
                    return

                if shifts_needed > 0:
                    self._advance(config, shifts_needed, proposed_balance)

            raw_index = (now - config.initial_start) // config.shift_size
            if raw_index != config.last_updated_index:
                slot = raw_index % config.interval_count
                config.interval_balances[slot] = proposed_balance
                config.last_updated_index = raw_index
                logger.debug(
                    f"{config.category.value}: recorded {proposed_balance} "
                    f"at slot {slot} (raw {raw_index})"
                )

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _advance(
        self,
        config: WindowConfig,
        shifts_needed: int,
        proposed_balance: int,
    ) -> None:
        """Move the period forward by whole shifts and backfill skipped slots."""
        n = config.interval_count
        distance = shifts_needed * config.shift_size
        config.period_start += distance
        config.period_end += distance

        oldest = (config.last_updated_index + shifts_needed) % n
        config.period_start_balance = config.interval_balances[oldest]

        # Approximation: skipped intervals all take the current proposal.
        for step in range(1, shifts_needed + 1):
            config.interval_balances[(config.last_updated_index + step) % n] = proposed_balance

        logger.debug(
            f"{config.category.value}: advanced {shifts_needed} shift(s), "
            f"period start balance {config.period_start_balance}"
        )

    def _resync(self, config: WindowConfig, now: int) -> None:
        """Rebuild a fully stale window from its oldest recorded balance."""
        category = config.category
        baseline = config.interval_balances[0]
        defaults = get_category_defaults(category)

        logger.warning(
            f"{category.value}: window fully stale at {now}, "
            f"resyncing from oldest recorded balance {baseline}"
        )

        self.disable(category, now)
        self.enable(
            category,
            defaults.window_size,
            defaults.shift_size,
            baseline,
            defaults.threshold_pct,
            now,
        )
        self._emit(AuditEvent(
            event_type=AuditEventType.WINDOW_RESYNCED,
            timestamp=now,
            category=category,
            details={
                "baseline": baseline,
                "previous_window_size": config.window_size,
                "previous_shift_size": config.shift_size,
                "previous_threshold_pct": config.threshold_pct,
            },
        ))

    def _require(self, category: MonitoredCategory) -> WindowConfig:
        config = self._configs.get(MonitoredCategory(category))
        if config is None:
            raise NotActiveError(f"No active window for {MonitoredCategory(category).value}")
        return config

    def _emit(self, event: AuditEvent) -> None:
        if self._on_event:
            self._on_event(event)


def _validate_window(
    window_size: int,
    shift_size: int,
    starting_balance: int,
    threshold_pct: int,
) -> None:
    """Raise InvalidConfigurationError unless the window parameters are usable."""
    if shift_size <= 0:
        raise InvalidConfigurationError(f"shift_size must be positive, got {shift_size}")
    if window_size <= shift_size:
        raise InvalidConfigurationError(
            f"window_size ({window_size}) must exceed shift_size ({shift_size})"
        )
    if window_size % shift_size != 0:
        raise InvalidConfigurationError(
            f"window_size ({window_size}) must be a multiple of shift_size ({shift_size})"
        )
    if not 0 <= threshold_pct <= 100:
        raise InvalidConfigurationError(
            f"threshold_pct must be within [0, 100], got {threshold_pct}"
        )
    if starting_balance < 0:
        raise InvalidConfigurationError(
            f"starting_balance must not be negative, got {starting_balance}"
        )
