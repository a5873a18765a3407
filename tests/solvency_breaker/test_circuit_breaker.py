"""
Tests for the Threshold Evaluator and Circuit Breaker.

Tests cover:
- Floor arithmetic (integer, truncating, floor counts as breach)
- Severity classification
- Breach enforcement: degraded mode, window disable, restriction
- Unmonitored categories
- Atomicity under concurrent checks
"""

import threading

import pytest

from solvency_breaker import (
    MonitoredCategory,
    AuditEventType,
    SolvencyGuard,
    ThresholdEvaluator,
    InvalidConfigurationError,
    InvalidTimestampError,
    get_testing_config,
)


LP = MonitoredCategory.LIQUIDITY_POOL
CASINO = MonitoredCategory.CASINO

T0 = 1_700_000_000


class SignallingLock:
    """Re-entrant lock that reports when a thread starts waiting on it."""

    def __init__(self):
        self.inner = threading.RLock()
        self.entering = threading.Event()

    def __enter__(self):
        self.entering.set()
        self.inner.acquire()
        return self

    def __exit__(self, *exc_info):
        self.inner.release()


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def guard():
    """Guard with persistence off and default severity (5%)."""
    return SolvencyGuard(get_testing_config())


@pytest.fixture
def lp_guard(guard):
    """Guard monitoring LiquidityPool: 100000 start, 20% threshold."""
    guard.enable_window(LP, 28_800, 7_200, 100_000, 20, now=T0)
    return guard


# =============================================================
# TEST: Threshold Evaluator
# =============================================================

class TestThresholdEvaluator:
    """Test floor and severity arithmetic."""

    @pytest.mark.parametrize("start,threshold,floor", [
        (100_000, 20, 80_000),
        (100_000, 0, 100_000),
        (100_000, 100, 0),
        (999, 33, 669),      # 999 * 67 // 100 = 669.33 -> 669
        (1, 50, 0),
        (0, 20, 0),
    ])
    def test_allowed_floor_truncates(self, start, threshold, floor):
        assert ThresholdEvaluator.allowed_floor(start, threshold) == floor

    def test_above_floor_not_breached(self):
        result = ThresholdEvaluator().evaluate(100_000, 20, 80_001, 5)

        assert result.allowed_floor == 80_000
        assert not result.breached
        assert not result.severe

    def test_floor_itself_is_breach(self):
        result = ThresholdEvaluator().evaluate(100_000, 20, 80_000, 5)

        assert result.breached
        assert not result.severe

    @pytest.mark.parametrize("proposed,severe", [
        (80_000, False),   # 100
        (79_000, False),   # 98
        (76_000, False),   # 95, not strictly below
        (75_999, True),    # 94
        (75_000, True),    # 93
        (0, True),
    ])
    def test_severity_at_five_percent(self, proposed, severe):
        result = ThresholdEvaluator().evaluate(100_000, 20, proposed, 5)

        assert result.breached
        assert result.severe is severe

    def test_zero_floor_always_severe(self):
        evaluator = ThresholdEvaluator()

        assert evaluator.evaluate(100_000, 100, 0, 100).severe
        assert evaluator.evaluate(0, 20, 0, 100).severe

    def test_zero_severity_restricts_anything_below_floor(self):
        evaluator = ThresholdEvaluator()

        assert evaluator.evaluate(100_000, 20, 79_999, 0).severe
        assert not evaluator.evaluate(100_000, 20, 80_000, 0).severe

    def test_full_severity_never_restricts_nonzero_floor(self):
        assert not ThresholdEvaluator().evaluate(100_000, 20, 0, 100).severe


# =============================================================
# TEST: Check Without Breach
# =============================================================

class TestPermittedChecks:
    """Test checks that should let the operation through."""

    def test_above_floor_permitted(self, lp_guard):
        result = lp_guard.check_and_enforce(LP, "alice", 80_001, T0 + 60)

        assert result.permitted
        assert not result.restricted
        assert result.breach is None
        assert lp_guard.tracker.is_active(LP)
        assert not lp_guard.high_risk_active

    def test_unmonitored_category_permitted(self, lp_guard):
        """Casino has no window: anything goes, nothing changes."""
        events_before = len(lp_guard.journal)

        result = lp_guard.check_and_enforce(CASINO, "alice", 0, T0)

        assert result.permitted
        assert not lp_guard.high_risk_active
        assert not lp_guard.is_restricted("alice")
        assert len(lp_guard.journal) == events_before

    def test_balance_increase_permitted(self, lp_guard):
        assert lp_guard.check_and_enforce(LP, "alice", 250_000, T0 + 1).permitted

    def test_zero_start_balance_permits_positive(self, guard):
        guard.enable_window(CASINO, 28_800, 7_200, 0, 40, now=T0)

        assert guard.check_and_enforce(CASINO, "alice", 1, T0).permitted

    def test_invalid_timestamp_propagates(self, lp_guard):
        with pytest.raises(InvalidTimestampError):
            lp_guard.check_and_enforce(LP, "alice", 1, T0 - 1)

        # Nothing enforced
        assert lp_guard.tracker.is_active(LP)
        assert not lp_guard.high_risk_active
        assert lp_guard.get_restricted_accounts() == []


# =============================================================
# TEST: Breach Enforcement
# =============================================================

class TestBreachEnforcement:
    """Test what happens when a proposed balance breaches the floor."""

    def test_floor_breach_not_severe(self, lp_guard):
        result = lp_guard.check_and_enforce(LP, "alice", 80_000, T0 + 60)

        assert not result.permitted
        assert not result.restricted
        assert result.breach.allowed_floor == 80_000
        assert result.breach.period_start_balance == 100_000
        assert not lp_guard.tracker.is_active(LP)
        assert lp_guard.high_risk_active

    def test_severe_breach_restricts(self, lp_guard):
        result = lp_guard.check_and_enforce(LP, "mallory", 75_000, T0 + 60)

        assert not result.permitted
        assert result.restricted
        assert lp_guard.is_restricted("mallory")
        assert not lp_guard.tracker.is_active(LP)
        assert lp_guard.high_risk_active

    def test_large_legitimate_drop_not_restricted(self, lp_guard):
        result = lp_guard.check_and_enforce(LP, "whale", 79_000, T0 + 60)

        assert not result.permitted
        assert not result.restricted
        assert not lp_guard.is_restricted("whale")
        # Window still disabled, degraded mode still on
        assert lp_guard.get_window_config(LP) is None
        assert lp_guard.high_risk_active

    def test_breach_starts_first_epoch(self, lp_guard):
        result = lp_guard.check_and_enforce(LP, "alice", 1, T0)

        assert result.breach.high_risk_activated
        assert lp_guard.get_high_risk_pool_stats().epoch == 1

    def test_breach_while_degraded_keeps_epoch(self, lp_guard):
        epoch = lp_guard.enable_high_risk_mode(T0)

        result = lp_guard.check_and_enforce(LP, "alice", 1, T0 + 1)

        assert not result.permitted
        assert not result.breach.high_risk_activated
        assert lp_guard.get_high_risk_pool_stats().epoch == epoch

    def test_other_category_unaffected(self, lp_guard):
        lp_guard.enable_window(CASINO, 28_800, 7_200, 500_000, 40, now=T0)

        lp_guard.check_and_enforce(LP, "alice", 1, T0 + 1)

        assert lp_guard.tracker.is_active(CASINO)
        assert lp_guard.check_and_enforce(CASINO, "bob", 300_001, T0 + 2).permitted

    def test_check_after_breach_is_unmonitored(self, lp_guard):
        lp_guard.check_and_enforce(LP, "alice", 1, T0)

        assert lp_guard.check_and_enforce(LP, "bob", 1, T0 + 1).permitted
        assert not lp_guard.is_restricted("bob")

    def test_breach_recorded_before_side_effects(self, lp_guard):
        lp_guard.check_and_enforce(LP, "mallory", 0, T0 + 5)

        types = [e.event_type for e in lp_guard.get_audit_events()]
        assert types == [
            AuditEventType.WINDOW_ENABLED,
            AuditEventType.BREACH_DETECTED,
            AuditEventType.HIGH_RISK_ENABLED,
            AuditEventType.WINDOW_DISABLED,
            AuditEventType.ACCOUNT_RESTRICTED,
        ]

        breach = lp_guard.get_audit_events(AuditEventType.BREACH_DETECTED)[0]
        assert breach.account == "mallory"
        assert breach.timestamp == T0 + 5
        assert breach.details["allowed_floor"] == 80_000
        assert breach.details["restricted"] is True

    def test_window_disable_carries_breach_time(self, lp_guard):
        lp_guard.check_and_enforce(LP, "alice", 79_000, T0 + 5)

        disabled = lp_guard.get_audit_events(AuditEventType.WINDOW_DISABLED)
        assert [e.timestamp for e in disabled] == [T0 + 5]

    def test_operator_disable_carries_time(self, lp_guard):
        lp_guard.disable_window(LP, now=T0 + 30)

        disabled = lp_guard.get_audit_events(AuditEventType.WINDOW_DISABLED)[-1]
        assert disabled.timestamp == T0 + 30

    def test_reenable_after_breach(self, lp_guard):
        lp_guard.check_and_enforce(LP, "alice", 1, T0)

        config = lp_guard.enable_window(LP, 28_800, 7_200, 60_000, 20, now=T0 + 100)

        assert config.period_start_balance == 60_000
        assert lp_guard.check_and_enforce(LP, "bob", 48_001, T0 + 200).permitted

    def test_resync_baseline_used_for_evaluation(self, lp_guard):
        """After a fully stale window the floor comes from slot 0."""
        lp_guard.check_and_enforce(LP, "alice", 85_000, T0 + 28_800)   # slot 0

        result = lp_guard.check_and_enforce(LP, "mallory", 1, T0 + 57_600)

        assert not result.permitted
        assert result.breach.period_start_balance == 85_000
        assert result.breach.allowed_floor == 68_000
        assert result.restricted


# =============================================================
# TEST: Restriction Severity
# =============================================================

class TestRestrictionSeverity:
    """Test the adjustable severity margin."""

    def test_default_from_config(self, guard):
        assert guard.breaker.restriction_severity_pct == 5

    def test_zero_severity_restricts_any_sub_floor_drop(self, lp_guard):
        lp_guard.set_restriction_severity(0)

        result = lp_guard.check_and_enforce(LP, "alice", 79_999, T0 + 1)

        assert result.restricted

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_out_of_range_rejected(self, guard, pct):
        with pytest.raises(InvalidConfigurationError):
            guard.set_restriction_severity(pct)
        assert guard.breaker.restriction_severity_pct == 5

    def test_change_is_audited(self, guard):
        guard.set_restriction_severity(10)

        event = guard.get_audit_events(AuditEventType.SEVERITY_CHANGED)[-1]
        assert event.details == {"previous": 5, "current": 10}

    def test_severity_read_after_category_lock(self, lp_guard, monkeypatch):
        """A check queued on the category lock sees a severity set meanwhile."""
        lock = SignallingLock()
        monkeypatch.setitem(lp_guard.tracker._locks, LP, lock)
        results = []

        lock.inner.acquire()
        worker = threading.Thread(
            target=lambda: results.append(
                lp_guard.check_and_enforce(LP, "alice", 79_999, T0 + 1)
            )
        )
        worker.start()
        assert lock.entering.wait(timeout=5)

        lp_guard.set_restriction_severity(0)
        lock.inner.release()
        worker.join(timeout=5)

        assert results[0].restricted
        assert results[0].breach.restriction_severity_pct == 0


# =============================================================
# TEST: Concurrency
# =============================================================

class TestConcurrentChecks:
    """Test that a breach is decided exactly once."""

    def test_simultaneous_breaches_enforced_once(self, lp_guard):
        barrier = threading.Barrier(8)
        results = []
        results_lock = threading.Lock()

        def attempt(account):
            barrier.wait()
            result = lp_guard.check_and_enforce(LP, account, 0, T0 + 10)
            with results_lock:
                results.append(result)

        threads = [
            threading.Thread(target=attempt, args=(f"acct-{i}",))
            for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        denied = [r for r in results if not r.permitted]
        assert len(denied) == 1
        assert len(lp_guard.get_restricted_accounts()) == 1
        assert len(lp_guard.get_audit_events(AuditEventType.BREACH_DETECTED)) == 1
        assert lp_guard.get_high_risk_pool_stats().epoch == 1
