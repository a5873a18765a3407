"""
Solvency Breaker - Restriction Registry.

============================================================
PURPOSE
============================================================
Set of accounts barred from self-service operations.

The ledger MUST call is_restricted() before any self-service
mutating operation and reject it when True. Entries persist
until an operator clears them.

============================================================
"""

import logging
import threading
from typing import Callable, List, Optional, Set

from .types import AuditEvent, AuditEventType


logger = logging.getLogger(__name__)


class RestrictionRegistry:
    """Thread-safe set of restricted account identifiers."""

    def __init__(self, on_event: Optional[Callable[[AuditEvent], None]] = None):
        self._restricted: Set[str] = set()
        self._lock = threading.RLock()
        self._on_event = on_event

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def restrict(self, account: str, now: Optional[int] = None, reason: str = "operator") -> bool:
        """
        Restrict an account.

        Returns:
            True if the account was newly restricted
        """
        with self._lock:
            if account in self._restricted:
                return False
            self._restricted.add(account)

        logger.warning(f"Account restricted: {account} ({reason})")
        self._emit(AuditEvent(
            event_type=AuditEventType.ACCOUNT_RESTRICTED,
            timestamp=now,
            account=account,
            details={"reason": reason},
        ))
        return True

    def unrestrict(self, account: str, now: Optional[int] = None) -> bool:
        """
        Lift an account restriction.

        Returns:
            True if the account was restricted
        """
        with self._lock:
            if account not in self._restricted:
                return False
            self._restricted.discard(account)

        logger.info(f"Account unrestricted: {account}")
        self._emit(AuditEvent(
            event_type=AuditEventType.ACCOUNT_UNRESTRICTED,
            timestamp=now,
            account=account,
        ))
        return True

    def is_restricted(self, account: str) -> bool:
        with self._lock:
            return account in self._restricted

    def list_restricted(self) -> List[str]:
        """Sorted snapshot of restricted accounts."""
        with self._lock:
            return sorted(self._restricted)

    def __len__(self) -> int:
        with self._lock:
            return len(self._restricted)

    def _emit(self, event: AuditEvent) -> None:
        if self._on_event:
            self._on_event(event)
