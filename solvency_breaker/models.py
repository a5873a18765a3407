"""
Solvency Breaker - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for persisting:
- Every audit event (generic journal)
- Breaches (denormalized for querying)
- High-risk withdrawals

ALL BREACH AND RESTRICTION DECISIONS MUST BE PERSISTED.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy.types import TypeDecorator


Base = declarative_base()


class IntegerAmount(TypeDecorator):
    """
    Exact integer of any size, stored as decimal text.

    Token balances routinely exceed 64 bits, which INTEGER
    columns (and the SQLite driver) cannot bind.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# AUDIT EVENT MODEL
# ============================================================

class AuditEventModel(Base):
    """
    Persisted audit event.

    One row per journal entry, whatever its type.
    """

    __tablename__ = "solvency_audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        index=True,
    )
    """AuditEventType value."""

    event_timestamp: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        index=True,
    )
    """Caller-supplied Unix time of the triggering call."""

    category: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        index=True,
    )

    account: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    """When the event entered the in-memory journal."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_solvency_audit_type_ts", "event_type", "event_timestamp"),
    )


# ============================================================
# BREACH EVENT MODEL
# ============================================================

class BreachEventModel(Base):
    """
    Persisted threshold breach.
    """

    __tablename__ = "solvency_breach_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    category: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    account: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    event_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    proposed_balance: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    period_start_balance: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    allowed_floor: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    threshold_pct: Mapped[int] = mapped_column(Integer, nullable=False)

    restriction_severity_pct: Mapped[int] = mapped_column(Integer, nullable=False)

    restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Whether the acting account was restricted."""

    high_risk_activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Whether this breach switched degraded mode on."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_solvency_breach_category_ts", "category", "event_timestamp"),
    )


# ============================================================
# HIGH RISK WITHDRAWAL MODEL
# ============================================================

class HighRiskWithdrawalModel(Base):
    """
    Persisted degraded-mode withdrawal.
    """

    __tablename__ = "solvency_high_risk_withdrawals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    amount: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    epoch: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    user_withdrawn_this_epoch: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    pool_withdrawn_total: Mapped[int] = mapped_column(IntegerAmount, nullable=False)

    event_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
