"""
Tests for the ledger-facing SolvencyGuard and its helpers.

Tests cover:
- Restriction registry
- Window defaults and the balance provider
- Audit journal delivery
- Singleton access and the restriction decorator
- Configuration loading
"""

import threading
from unittest.mock import MagicMock

import pytest

from solvency_breaker import (
    MonitoredCategory,
    AuditEvent,
    AuditEventType,
    AuditJournal,
    RestrictionRegistry,
    SolvencyGuard,
    SolvencyBreakerConfig,
    SolvencyBreakerError,
    InvalidConfigurationError,
    AccountRestrictedError,
    AuditPersistenceError,
    get_category_defaults,
    get_strict_config,
    get_testing_config,
    load_config_from_dict,
)
from solvency_breaker import engine
from solvency_breaker.engine import get_guard, init_guard, require_not_restricted


LP = MonitoredCategory.LIQUIDITY_POOL
CASINO = MonitoredCategory.CASINO

T0 = 1_700_000_000


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def guard():
    return SolvencyGuard(get_testing_config())


@pytest.fixture
def reset_global_guard():
    """Isolate tests touching the module-level guard."""
    previous = engine._guard
    engine._guard = None
    yield
    engine._guard = previous


# =============================================================
# TEST: Restriction Registry
# =============================================================

class TestRestrictionRegistry:
    """Test the restricted-account set."""

    def test_restrict_is_idempotent(self):
        registry = RestrictionRegistry()

        assert registry.restrict("mallory") is True
        assert registry.restrict("mallory") is False
        assert len(registry) == 1

    def test_unrestrict(self):
        registry = RestrictionRegistry()
        registry.restrict("mallory")

        assert registry.unrestrict("mallory") is True
        assert registry.unrestrict("mallory") is False
        assert not registry.is_restricted("mallory")

    def test_list_is_sorted_snapshot(self):
        registry = RestrictionRegistry()
        for account in ("carol", "alice", "bob"):
            registry.restrict(account)

        listed = registry.list_restricted()
        listed.append("dave")

        assert registry.list_restricted() == ["alice", "bob", "carol"]

    def test_events_only_on_change(self):
        events = []
        registry = RestrictionRegistry(on_event=events.append)

        registry.restrict("mallory", T0, reason="breach:Casino")
        registry.restrict("mallory", T0 + 1)
        registry.unrestrict("mallory", T0 + 2)

        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_RESTRICTED,
            AuditEventType.ACCOUNT_UNRESTRICTED,
        ]
        assert events[0].details == {"reason": "breach:Casino"}


# =============================================================
# TEST: Guard Windows
# =============================================================

class TestGuardWindows:
    """Test enable_window defaults and the balance provider."""

    def test_omitted_parameters_use_category_defaults(self, guard):
        config = guard.enable_window(CASINO, starting_balance=1_000, now=T0)
        defaults = get_category_defaults(CASINO)

        assert config.window_size == defaults.window_size
        assert config.shift_size == defaults.shift_size
        assert config.threshold_pct == 40

    def test_balance_provider_seeds_window(self):
        provider = MagicMock(return_value=123_456)
        guard = SolvencyGuard(get_testing_config(), balance_provider=provider)

        config = guard.enable_window(LP, now=T0)

        provider.assert_called_once_with(LP)
        assert config.period_start_balance == 123_456

    def test_missing_balance_without_provider_rejected(self, guard):
        with pytest.raises(InvalidConfigurationError):
            guard.enable_window(LP, now=T0)
        assert not guard.tracker.is_active(LP)

    def test_unknown_category_rejected(self, guard):
        with pytest.raises(InvalidConfigurationError):
            guard.enable_window("Lottery", 28_800, 7_200, 1, 20, now=T0)

    def test_category_value_accepted(self, guard):
        guard.enable_window("LiquidityPool", 28_800, 7_200, 1_000, 20, now=T0)

        assert guard.tracker.is_active(LP)

    def test_status_snapshot(self, guard):
        guard.enable_window(LP, 28_800, 7_200, 1_000, 20, now=T0)
        guard.restrict("mallory", T0)

        status = guard.get_status()

        assert status["windows"]["LiquidityPool"]["period_start_balance"] == 1_000
        assert status["windows"]["Casino"] is None
        assert status["restricted_accounts"] == 1
        assert status["high_risk_pool"]["is_active"] is False
        assert status["audit_pending"] == 0


# =============================================================
# TEST: Guard Restrictions
# =============================================================

class TestGuardRestrictions:
    """Test operator restriction management through the guard."""

    def test_ensure_not_restricted(self, guard):
        guard.ensure_not_restricted("alice")
        guard.restrict("alice")

        with pytest.raises(AccountRestrictedError) as exc_info:
            guard.ensure_not_restricted("alice")
        assert exc_info.value.account == "alice"

    def test_operator_unrestrict_after_breach(self, guard):
        guard.enable_window(LP, 28_800, 7_200, 100_000, 20, now=T0)
        guard.check_and_enforce(LP, "mallory", 0, T0)

        assert guard.unrestrict("mallory", T0 + 60)
        assert guard.get_restricted_accounts() == []

    def test_high_risk_withdrawal_through_guard(self, guard):
        guard.enable_high_risk_mode(T0)

        result = guard.withdraw_high_risk("alice", 250, T0 + 1)

        assert result.pool_remaining == 49_750
        assert guard.get_high_risk_pool_stats().total_withdrawn == 250


# =============================================================
# TEST: Audit Journal
# =============================================================

class TestAuditJournal:
    """Test recording and deferred delivery."""

    def _event(self, event_type=AuditEventType.ACCOUNT_RESTRICTED, account="a"):
        return AuditEvent(event_type=event_type, timestamp=T0, account=account)

    def test_record_does_not_deliver(self):
        journal = AuditJournal()
        subscriber = MagicMock()
        journal.subscribe(subscriber)

        journal.record(self._event())

        subscriber.assert_not_called()
        assert journal.pending_count == 1

    def test_dispatch_delivers_in_order(self):
        journal = AuditJournal()
        delivered = []
        journal.subscribe(delivered.append)

        journal.record(self._event(account="a"))
        journal.record(self._event(account="b"))

        assert journal.dispatch_pending() == 2
        assert [e.account for e in delivered] == ["a", "b"]
        assert journal.pending_count == 0

    def test_failed_event_requeued(self):
        journal = AuditJournal()
        subscriber = MagicMock(side_effect=[None, AuditPersistenceError("down")])
        journal.subscribe(subscriber)
        journal.record(self._event(account="a"))
        journal.record(self._event(account="b"))

        with pytest.raises(AuditPersistenceError):
            journal.dispatch_pending()

        assert journal.pending_count == 1

        subscriber.side_effect = None
        assert journal.dispatch_pending() == 1
        assert subscriber.call_args[0][0].account == "b"

    def test_bounded_history(self):
        journal = AuditJournal(max_events=3)
        for i in range(5):
            journal.record(self._event(account=str(i)))

        assert len(journal) == 3
        assert [e.account for e in journal.events()] == ["2", "3", "4"]

    def test_filter_and_limit(self):
        journal = AuditJournal()
        journal.record(self._event(AuditEventType.ACCOUNT_RESTRICTED, "a"))
        journal.record(self._event(AuditEventType.HIGH_RISK_ENABLED, None))
        journal.record(self._event(AuditEventType.ACCOUNT_RESTRICTED, "b"))

        restricted = journal.events(AuditEventType.ACCOUNT_RESTRICTED, limit=1)

        assert [e.account for e in restricted] == ["b"]

    def test_guard_delivers_after_decision(self):
        received = []
        guard = SolvencyGuard(get_testing_config(), on_audit_event=received.append)

        guard.restrict("mallory", T0)

        assert [e.event_type for e in received] == [AuditEventType.ACCOUNT_RESTRICTED]

    def test_persistence_failure_does_not_mask_decision(self):
        repository = MagicMock()
        repository.save_audit_event.side_effect = AuditPersistenceError("db down")
        guard = SolvencyGuard(get_testing_config(), repository=repository)

        guard.enable_window(LP, 28_800, 7_200, 100_000, 20, now=T0)
        result = guard.check_and_enforce(LP, "mallory", 0, T0)

        assert not result.permitted
        assert guard.is_restricted("mallory")
        assert guard.journal.pending_count == 5

        with pytest.raises(AuditPersistenceError):
            guard.flush_audit()

        repository.save_audit_event.side_effect = None
        assert guard.flush_audit() == 5
        assert guard.journal.pending_count == 0

    def test_any_subscriber_error_surfaces_as_persistence_error(self):
        journal = AuditJournal()
        journal.subscribe(MagicMock(side_effect=RuntimeError("alert sink down")))
        journal.record(self._event())

        with pytest.raises(AuditPersistenceError) as exc_info:
            journal.dispatch_pending()

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert journal.pending_count == 1

    def test_failing_callback_never_raises_from_decisions(self):
        """A broken alert callback must not turn decisions into exceptions."""
        callback = MagicMock(side_effect=RuntimeError("alert sink down"))
        guard = SolvencyGuard(get_testing_config(), on_audit_event=callback)

        guard.enable_window(LP, 28_800, 7_200, 100_000, 20, now=T0)
        permitted = guard.check_and_enforce(LP, "alice", 90_000, T0 + 60)
        denied = guard.check_and_enforce(LP, "mallory", 0, T0 + 120)

        assert permitted.permitted
        assert not denied.permitted
        assert denied.restricted
        assert guard.high_risk_active
        # enable + breach, restriction, degraded mode, window disable
        assert guard.journal.pending_count == 5

        with pytest.raises(AuditPersistenceError):
            guard.flush_audit()

        callback.side_effect = None
        assert guard.flush_audit() == 5

    def test_concurrent_dispatch_keeps_recording_order(self):
        journal = AuditJournal()
        delivered = []
        first_delivered = threading.Event()
        release = threading.Event()

        def slow_subscriber(event):
            delivered.append(event.account)
            if event.account == "a":
                first_delivered.set()
                release.wait(timeout=5)

        journal.subscribe(slow_subscriber)
        journal.record(self._event(account="a"))
        journal.record(self._event(account="b"))

        first = threading.Thread(target=journal.dispatch_pending)
        first.start()
        assert first_delivered.wait(timeout=5)

        # Recorded while the first batch is still being delivered
        journal.record(self._event(account="c"))
        second = threading.Thread(target=journal.dispatch_pending)
        second.start()
        second.join(timeout=0.2)

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert delivered == ["a", "b", "c"]


# =============================================================
# TEST: Singleton and Decorator
# =============================================================

class TestSingleton:
    """Test module-level guard access."""

    def test_uninitialized_raises(self, reset_global_guard):
        with pytest.raises(SolvencyBreakerError):
            get_guard()

    def test_init_then_get(self, reset_global_guard):
        guard = init_guard(get_testing_config())

        assert get_guard() is guard

    def test_decorator_blocks_restricted_account(self, reset_global_guard):
        guard = init_guard(get_testing_config())
        deposit = MagicMock(return_value="ok")

        @require_not_restricted("user")
        def self_service_deposit(user, amount):
            return deposit(user, amount)

        assert self_service_deposit("alice", 10) == "ok"

        guard.restrict("alice")
        with pytest.raises(AccountRestrictedError):
            self_service_deposit(user="alice", amount=10)

        deposit.assert_called_once_with("alice", 10)


# =============================================================
# TEST: Configuration
# =============================================================

class TestConfiguration:
    """Test configuration sources and validation."""

    def test_defaults(self):
        config = SolvencyBreakerConfig()

        assert config.breaker.restriction_severity_pct == 5
        assert config.high_risk_pool.default_pool_size == 50_000
        assert config.high_risk_pool.default_per_user_limit == 1_000
        assert config.persistence.enabled is False

    def test_strict_preset(self):
        config = get_strict_config().validate()

        assert config.breaker.restriction_severity_pct == 0
        assert config.high_risk_pool.default_pool_size == 10_000

    def test_dict_roundtrip_keeps_values(self):
        config = get_strict_config()

        loaded = load_config_from_dict(config.to_dict())

        assert loaded.to_dict() == config.to_dict()

    def test_invalid_severity_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            load_config_from_dict({"breaker": {"restriction_severity_pct": 150}})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "breaker.yaml"
        path.write_text(
            "breaker:\n"
            "  restriction_severity_pct: 12\n"
            "high_risk_pool:\n"
            "  default_pool_size: 20000\n"
            "  default_per_user_limit: 500\n"
        )

        config = SolvencyBreakerConfig.from_yaml(path)

        assert config.breaker.restriction_severity_pct == 12
        assert config.high_risk_pool.default_pool_size == 20_000
        assert config.high_risk_pool.default_per_user_limit == 500

    def test_from_yaml_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            SolvencyBreakerConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SOLVENCY_POOL_SIZE", "8000")
        monkeypatch.setenv("SOLVENCY_PER_USER_LIMIT", "200")
        monkeypatch.setenv("SOLVENCY_RESTRICTION_SEVERITY_PCT", "7")
        monkeypatch.setenv("SOLVENCY_PERSISTENCE_ENABLED", "true")
        monkeypatch.setenv("SOLVENCY_DATABASE_URL", "sqlite://")

        config = SolvencyBreakerConfig.from_env()

        assert config.high_risk_pool.default_pool_size == 8_000
        assert config.high_risk_pool.default_per_user_limit == 200
        assert config.breaker.restriction_severity_pct == 7
        assert config.persistence.enabled is True
        assert config.persistence.database_url == "sqlite://"

    def test_from_env_invalid_pool_rejected(self, monkeypatch):
        monkeypatch.setenv("SOLVENCY_POOL_SIZE", "500")

        with pytest.raises(InvalidConfigurationError):
            SolvencyBreakerConfig.from_env()
