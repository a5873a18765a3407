"""
Solvency Breaker - Repository.

============================================================
PURPOSE
============================================================
Database operations for the audit trail: breaches,
restrictions, degraded-mode lifecycle and withdrawals.

Used as an AuditJournal subscriber. Never called from inside
a locked decision path.

============================================================
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select, desc
from sqlalchemy.orm import sessionmaker

from .config import PersistenceConfig
from .database import create_database_engine, create_session_factory, transaction_scope
from .models import AuditEventModel, BreachEventModel, HighRiskWithdrawalModel
from .types import AuditEvent, AuditEventType, MonitoredCategory


logger = logging.getLogger(__name__)


# ============================================================
# REPOSITORY
# ============================================================

class AuditRepository:
    """
    Repository for solvency breaker persistence.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize repository.

        Args:
            session_factory: Sync session factory
        """
        self._session_factory = session_factory

    @classmethod
    def from_config(cls, config: PersistenceConfig) -> "AuditRepository":
        """Build a repository (and its tables) from persistence config."""
        engine = create_database_engine(config.database_url, echo=config.echo)
        return cls(create_session_factory(engine))

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    def save_audit_event(self, event: AuditEvent) -> None:
        """
        Persist one audit event.

        Breaches and withdrawals also get their own typed row,
        written in the same transaction.

        Raises:
            AuditPersistenceError: On any database failure
        """
        with transaction_scope(self._session_factory) as session:
            session.add(AuditEventModel(
                event_type=event.event_type.value,
                event_timestamp=event.timestamp,
                category=event.category.value if event.category else None,
                account=event.account,
                details=event.details,
                recorded_at=event.recorded_at,
            ))

            if event.event_type == AuditEventType.BREACH_DETECTED:
                d = event.details
                session.add(BreachEventModel(
                    category=d["category"],
                    account=d["account"],
                    event_timestamp=d["timestamp"],
                    proposed_balance=d["proposed_balance"],
                    period_start_balance=d["period_start_balance"],
                    allowed_floor=d["allowed_floor"],
                    threshold_pct=d["threshold_pct"],
                    restriction_severity_pct=d["restriction_severity_pct"],
                    restricted=d["restricted"],
                    high_risk_activated=d["high_risk_activated"],
                ))

            elif event.event_type == AuditEventType.HIGH_RISK_WITHDRAWAL:
                d = event.details
                session.add(HighRiskWithdrawalModel(
                    account=event.account,
                    amount=d["amount"],
                    epoch=d["epoch"],
                    user_withdrawn_this_epoch=d["user_withdrawn_this_epoch"],
                    pool_withdrawn_total=d["pool_withdrawn_total"],
                    event_timestamp=event.timestamp,
                ))

        logger.debug(f"Persisted audit event: {event.event_type.value}")

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get_audit_events(
        self,
        event_type: Optional[AuditEventType] = None,
        limit: int = 100,
    ) -> List[AuditEventModel]:
        """Most recent audit events, newest first."""
        with transaction_scope(self._session_factory) as session:
            stmt = select(AuditEventModel)
            if event_type is not None:
                stmt = stmt.where(AuditEventModel.event_type == event_type.value)
            stmt = stmt.order_by(desc(AuditEventModel.id)).limit(limit)
            return list(session.execute(stmt).scalars().all())

    def get_breaches(
        self,
        category: Optional[MonitoredCategory] = None,
        since: Optional[int] = None,
        limit: int = 100,
    ) -> List[BreachEventModel]:
        """
        Breaches, newest first.

        Args:
            category: Only this category
            since: Only breaches at or after this Unix time
            limit: Maximum number of results
        """
        with transaction_scope(self._session_factory) as session:
            stmt = select(BreachEventModel)
            if category is not None:
                stmt = stmt.where(BreachEventModel.category == MonitoredCategory(category).value)
            if since is not None:
                stmt = stmt.where(BreachEventModel.event_timestamp >= since)
            stmt = stmt.order_by(desc(BreachEventModel.id)).limit(limit)
            return list(session.execute(stmt).scalars().all())

    def get_withdrawals(
        self,
        account: Optional[str] = None,
        epoch: Optional[int] = None,
    ) -> List[HighRiskWithdrawalModel]:
        """High-risk withdrawals, oldest first."""
        with transaction_scope(self._session_factory) as session:
            stmt = select(HighRiskWithdrawalModel)
            if account is not None:
                stmt = stmt.where(HighRiskWithdrawalModel.account == account)
            if epoch is not None:
                stmt = stmt.where(HighRiskWithdrawalModel.epoch == epoch)
            stmt = stmt.order_by(HighRiskWithdrawalModel.id)
            return list(session.execute(stmt).scalars().all())

    # --------------------------------------------------------
    # STATISTICS
    # --------------------------------------------------------

    def get_breach_statistics(self, since: Optional[int] = None) -> Dict[str, Any]:
        """
        Summarize breaches.

        Args:
            since: Only breaches at or after this Unix time
        """
        breaches = self.get_breaches(since=since, limit=1_000_000)

        stats = {
            "total_breaches": len(breaches),
            "by_category": {c.value: 0 for c in MonitoredCategory},
            "restricted": 0,
            "high_risk_activations": 0,
            "accounts": set(),
        }

        for breach in breaches:
            stats["by_category"][breach.category] = stats["by_category"].get(breach.category, 0) + 1
            if breach.restricted:
                stats["restricted"] += 1
            if breach.high_risk_activated:
                stats["high_risk_activations"] += 1
            stats["accounts"].add(breach.account)

        stats["accounts"] = sorted(stats["accounts"])
        return stats
