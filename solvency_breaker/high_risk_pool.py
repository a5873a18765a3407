"""
Solvency Breaker - High Risk Pool.

============================================================
PURPOSE
============================================================
Caps withdrawals while degraded (high-risk) mode is active.

Two limits apply to every withdrawal:
- GLOBAL : total withdrawn this activation <= pool_size
- PER USER: withdrawn by the user this epoch <= per_user_limit

============================================================
EPOCHS
============================================================
Every enable() starts a new epoch. A user's counter belongs
to the epoch it was stamped with; the first withdrawal in a
newer epoch resets it. Nothing iterates over users.

============================================================
RESET RULES
============================================================
enable():
    pool used since last reset  -> restore defaults, zero total
    pool untouched              -> keep operator configuration
disable():
    keeps accumulated totals
configure():
    only while inactive, zeroes total

============================================================
"""

import logging
import threading
from typing import Callable, Dict, Optional

from .config import HighRiskPoolConfig, MIN_POOL_SIZE, MIN_PER_USER_LIMIT
from .types import (
    AuditEvent,
    AuditEventType,
    HighRiskPoolStats,
    UserWithdrawalRecord,
    WithdrawalResult,
    InvalidConfigurationError,
    AlreadyActiveError,
    NotActiveError,
    PoolExhaustedError,
    UserLimitExceededError,
)


logger = logging.getLogger(__name__)


class HighRiskPool:
    """
    Epoch-scoped withdrawal limiter for degraded mode.
    """

    def __init__(
        self,
        config: Optional[HighRiskPoolConfig] = None,
        on_event: Optional[Callable[[AuditEvent], None]] = None,
    ):
        """
        Initialize pool.

        Args:
            config: Default limits (restored after a used activation)
            on_event: Receives lifecycle and withdrawal events
        """
        self._config = config or HighRiskPoolConfig()
        self._config.validate()
        self._on_event = on_event
        self._lock = threading.RLock()

        self._is_active = False
        self._epoch = 0
        self._pool_size = self._config.default_pool_size
        self._per_user_limit = self._config.default_per_user_limit
        self._total_withdrawn = 0
        self._users: Dict[str, UserWithdrawalRecord] = {}

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._is_active

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def get_user_withdrawn(self, account: str) -> int:
        """Amount the user withdrew in the current epoch."""
        with self._lock:
            record = self._users.get(account)
            if record is None or record.last_epoch != self._epoch:
                return 0
            return record.withdrawn_this_epoch

    def get_stats(self) -> HighRiskPoolStats:
        with self._lock:
            return HighRiskPoolStats(
                is_active=self._is_active,
                epoch=self._epoch,
                pool_size=self._pool_size,
                per_user_limit=self._per_user_limit,
                total_withdrawn=self._total_withdrawn,
                remaining=max(self._pool_size - self._total_withdrawn, 0),
                users_this_epoch=sum(
                    1 for r in self._users.values()
                    if r.last_epoch == self._epoch and r.withdrawn_this_epoch > 0
                ),
            )

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    def enable(self, now: Optional[int] = None) -> int:
        """
        Enter degraded mode and start a new epoch.

        Returns:
            The new epoch number

        Raises:
            AlreadyActiveError: Degraded mode already on
        """
        with self._lock:
            if self._is_active:
                raise AlreadyActiveError("High-risk mode already active")

            self._epoch += 1
            reset = self._total_withdrawn > 0
            if reset:
                self._pool_size = self._config.default_pool_size
                self._per_user_limit = self._config.default_per_user_limit
                self._total_withdrawn = 0
            self._is_active = True

            logger.critical(
                f"HIGH RISK MODE ENABLED | epoch={self._epoch} "
                f"pool={self._pool_size} per_user={self._per_user_limit} "
                f"defaults_restored={reset}"
            )
            self._emit(AuditEvent(
                event_type=AuditEventType.HIGH_RISK_ENABLED,
                timestamp=now,
                details={
                    "epoch": self._epoch,
                    "pool_size": self._pool_size,
                    "per_user_limit": self._per_user_limit,
                    "defaults_restored": reset,
                },
            ))
            return self._epoch

    def disable(self, now: Optional[int] = None) -> None:
        """
        Leave degraded mode. Accumulated totals are kept.

        Raises:
            NotActiveError: Degraded mode is off
        """
        with self._lock:
            if not self._is_active:
                raise NotActiveError("High-risk mode not active")
            self._is_active = False

            logger.info(
                f"High risk mode disabled | epoch={self._epoch} "
                f"withdrawn={self._total_withdrawn}/{self._pool_size}"
            )
            self._emit(AuditEvent(
                event_type=AuditEventType.HIGH_RISK_DISABLED,
                timestamp=now,
                details={"epoch": self._epoch, "total_withdrawn": self._total_withdrawn},
            ))

    def configure(self, pool_size: int, per_user_limit: int) -> None:
        """
        Set custom limits for the next activation.

        Raises:
            AlreadyActiveError: Degraded mode is on
            InvalidConfigurationError: Limits violate pool rules
        """
        with self._lock:
            if self._is_active:
                raise AlreadyActiveError("Cannot configure pool while high-risk mode is active")
            if pool_size <= per_user_limit:
                raise InvalidConfigurationError(
                    f"pool_size ({pool_size}) must exceed per_user_limit ({per_user_limit})"
                )
            if pool_size <= MIN_POOL_SIZE:
                raise InvalidConfigurationError(f"pool_size must exceed {MIN_POOL_SIZE}")
            if per_user_limit <= MIN_PER_USER_LIMIT:
                raise InvalidConfigurationError(
                    f"per_user_limit must exceed {MIN_PER_USER_LIMIT}"
                )

            self._pool_size = pool_size
            self._per_user_limit = per_user_limit
            self._total_withdrawn = 0

            logger.info(f"High risk pool configured: pool={pool_size} per_user={per_user_limit}")
            self._emit(AuditEvent(
                event_type=AuditEventType.HIGH_RISK_CONFIGURED,
                timestamp=None,
                details={"pool_size": pool_size, "per_user_limit": per_user_limit},
            ))

    # --------------------------------------------------------
    # WITHDRAWALS
    # --------------------------------------------------------

    def withdraw(self, account: str, amount: int, now: int) -> WithdrawalResult:
        """
        Authorize and commit a withdrawal against both limits.

        Either both totals move or neither does.

        Raises:
            NotActiveError: Degraded mode is off
            InvalidConfigurationError: Non-positive amount
            PoolExhaustedError: Global pool would be exceeded
            UserLimitExceededError: User's epoch limit would be exceeded
        """
        with self._lock:
            if not self._is_active:
                raise NotActiveError("High-risk mode not active")
            if amount <= 0:
                raise InvalidConfigurationError(f"Withdrawal amount must be positive, got {amount}")

            if self._pool_size < self._total_withdrawn + amount:
                logger.warning(
                    f"High risk withdrawal rejected (pool): {account} amount={amount} "
                    f"withdrawn={self._total_withdrawn}/{self._pool_size}"
                )
                raise PoolExhaustedError(self._pool_size, self._total_withdrawn, amount)

            record = self._users.get(account) or UserWithdrawalRecord()
            withdrawn = record.withdrawn_this_epoch if record.last_epoch == self._epoch else 0

            if withdrawn + amount > self._per_user_limit:
                logger.warning(
                    f"High risk withdrawal rejected (user limit): {account} "
                    f"amount={amount} withdrawn={withdrawn}/{self._per_user_limit}"
                )
                raise UserLimitExceededError(account, withdrawn, amount, self._per_user_limit)

            record.last_epoch = self._epoch
            record.withdrawn_this_epoch = withdrawn + amount
            record.last_withdrawal_at = now
            self._users[account] = record
            self._total_withdrawn += amount

            result = WithdrawalResult(
                account=account,
                amount=amount,
                epoch=self._epoch,
                user_withdrawn_this_epoch=record.withdrawn_this_epoch,
                pool_withdrawn_total=self._total_withdrawn,
                pool_remaining=self._pool_size - self._total_withdrawn,
                timestamp=now,
            )

            logger.info(
                f"High risk withdrawal: {account} amount={amount} "
                f"user={record.withdrawn_this_epoch}/{self._per_user_limit} "
                f"pool={self._total_withdrawn}/{self._pool_size}"
            )
            self._emit(AuditEvent(
                event_type=AuditEventType.HIGH_RISK_WITHDRAWAL,
                timestamp=now,
                account=account,
                details={
                    "amount": amount,
                    "epoch": self._epoch,
                    "user_withdrawn_this_epoch": record.withdrawn_this_epoch,
                    "pool_withdrawn_total": self._total_withdrawn,
                },
            ))
            return result

    def _emit(self, event: AuditEvent) -> None:
        if self._on_event:
            self._on_event(event)
