"""Tests for ProviderHealthTracker: rate nudging, status derivation, probes and scoring."""

import pytest
from hypothesis import given, settings, strategies as st

from switchyard.config import PerformanceThresholds
from switchyard.observability.circuit_breaker import CircuitState
from switchyard.observability.health import HealthStatus, ProviderHealth, ProviderHealthTracker


@pytest.fixture
def tracker():
    return ProviderHealthTracker(PerformanceThresholds(), providers=["primary-llm", "local-inference"])


@pytest.mark.unit
class TestRecordOutcome:
    def test_new_provider_starts_healthy(self, tracker):
        health = tracker.health("primary-llm")

        assert health.status == HealthStatus.HEALTHY
        assert health.success_rate == 1.0
        assert health.error_rate == 0.0
        assert health.last_checked_at is None

    def test_unknown_provider_gets_default_record_without_storing(self, tracker):
        health = tracker.health("community-inference")

        assert health.status == HealthStatus.HEALTHY
        assert "community-inference" not in tracker.all_health()

    def test_single_failure_degrades(self, tracker):
        health = tracker.record_outcome("primary-llm", success=False, error="timeout")

        assert health.success_rate == pytest.approx(0.9)
        assert health.error_rate == pytest.approx(0.1)
        assert health.status == HealthStatus.DEGRADED
        assert health.consecutive_failures == 1
        assert health.last_error == "timeout"

    def test_success_rate_below_point_seven_is_unhealthy(self, tracker):
        for _ in range(3):
            tracker.record_outcome("primary-llm", success=False)
        assert tracker.health("primary-llm").status == HealthStatus.DEGRADED

        tracker.record_outcome("primary-llm", success=False)

        health = tracker.health("primary-llm")
        assert health.success_rate == pytest.approx(0.6)
        assert health.status == HealthStatus.UNHEALTHY
        assert tracker.is_unhealthy("primary-llm")

    def test_successes_recover_to_healthy(self, tracker):
        tracker.record_outcome("primary-llm", success=False)
        tracker.record_outcome("primary-llm", success=False)
        tracker.record_outcome("primary-llm", success=True, response_time_ms=120)
        assert tracker.health("primary-llm").status == HealthStatus.DEGRADED

        tracker.record_outcome("primary-llm", success=True, response_time_ms=110)
        tracker.record_outcome("primary-llm", success=True, response_time_ms=100)

        health = tracker.health("primary-llm")
        assert health.status == HealthStatus.HEALTHY
        assert health.consecutive_failures == 0
        assert health.response_time_ms == 100

    def test_failure_does_not_overwrite_response_time(self, tracker):
        tracker.record_outcome("primary-llm", success=True, response_time_ms=250)
        tracker.record_outcome("primary-llm", success=False, response_time_ms=9_000)

        assert tracker.health("primary-llm").response_time_ms == 250

    def test_returns_snapshot_not_live_record(self, tracker):
        snapshot = tracker.record_outcome("primary-llm", success=True)
        snapshot.success_rate = 0.0

        assert tracker.health("primary-llm").success_rate == 1.0

    @given(outcomes=st.lists(st.booleans(), min_size=1, max_size=100))
    @settings(max_examples=100)
    def test_rates_stay_within_bounds(self, outcomes):
        tracker = ProviderHealthTracker()
        for success in outcomes:
            health = tracker.record_outcome("primary-llm", success=success)
            assert 0.0 <= health.success_rate <= 1.0
            assert 0.0 <= health.error_rate <= 1.0


@pytest.mark.unit
class TestRecordProbe:
    def test_unreachable_probe_is_unhealthy(self, tracker):
        health = tracker.record_probe("primary-llm", reachable=False, error="connection refused")

        assert health.status == HealthStatus.UNHEALTHY
        assert health.success_rate == pytest.approx(0.8)
        assert health.consecutive_unhealthy_probes == 1
        assert health.last_error == "connection refused"

    def test_slow_probe_is_degraded(self, tracker):
        health = tracker.record_probe("primary-llm", reachable=True, response_time_ms=15_000)

        assert health.status == HealthStatus.DEGRADED
        assert health.success_rate == pytest.approx(0.9)
        assert health.response_time_ms == 15_000

    def test_fast_probe_restores_health(self, tracker):
        tracker.record_probe("primary-llm", reachable=False)
        tracker.record_probe("primary-llm", reachable=False)

        health = tracker.record_probe("primary-llm", reachable=True, response_time_ms=50)

        assert health.status == HealthStatus.HEALTHY
        assert health.consecutive_unhealthy_probes == 0
        assert health.consecutive_failures == 0
        assert health.success_rate == pytest.approx(0.7)

    def test_consecutive_unhealthy_probes_accumulate(self, tracker):
        for _ in range(3):
            tracker.record_probe("local-inference", reachable=False)

        assert tracker.health("local-inference").consecutive_unhealthy_probes == 3

    @given(reachable=st.lists(st.booleans(), min_size=1, max_size=60))
    @settings(max_examples=100)
    def test_probe_rates_stay_within_bounds(self, reachable):
        tracker = ProviderHealthTracker()
        for ok in reachable:
            health = tracker.record_probe("primary-llm", reachable=ok, response_time_ms=10)
            assert 0.0 <= health.success_rate <= 1.0
            assert 0.0 <= health.error_rate <= 1.0


@pytest.mark.unit
class TestScoring:
    def test_fresh_provider_scores_one(self, tracker):
        assert tracker.score("primary-llm") == pytest.approx(1.0)

    def test_score_components(self):
        tracker = ProviderHealthTracker(PerformanceThresholds(max_response_time_ms=1_000))
        tracker.record_probe("primary-llm", reachable=True, response_time_ms=500)
        tracker.set_circuit_state("primary-llm", CircuitState.OPEN)

        # latency 0.5, success 1.0, (1 - error) 1.0, circuit 0
        assert tracker.score("primary-llm") == pytest.approx(2.5 / 4)

    def test_latency_score_floors_at_zero(self):
        tracker = ProviderHealthTracker(PerformanceThresholds(max_response_time_ms=1_000))
        tracker.record_probe("primary-llm", reachable=True, response_time_ms=5_000)

        health = tracker.health("primary-llm")
        expected = (0.0 + health.success_rate + (1 - health.error_rate) + 1.0) / 4
        assert tracker.score("primary-llm") == pytest.approx(expected)

    def test_best_picks_highest_score(self, tracker):
        tracker.record_outcome("primary-llm", success=False)

        assert tracker.best(["primary-llm", "local-inference"]) == "local-inference"

    def test_best_ties_go_to_first(self, tracker):
        assert tracker.best(["local-inference", "primary-llm"]) == "local-inference"

    def test_best_of_nothing_is_none(self, tracker):
        assert tracker.best([]) is None

    def test_rank_orders_by_score(self, tracker):
        tracker.record_outcome("primary-llm", success=False)

        assert tracker.rank(["primary-llm", "local-inference"]) == ["local-inference", "primary-llm"]


@pytest.mark.unit
class TestCircuitMirrorAndReset:
    def test_observer_hook_mirrors_circuit_state(self, tracker):
        tracker.on_circuit_state_change("primary-llm", CircuitState.CLOSED, CircuitState.OPEN)

        assert tracker.health("primary-llm").circuit_state == CircuitState.OPEN

    def test_reset_single_provider_keeps_circuit_state(self, tracker):
        tracker.record_outcome("primary-llm", success=False)
        tracker.set_circuit_state("primary-llm", CircuitState.OPEN)

        tracker.reset("primary-llm")

        health = tracker.health("primary-llm")
        assert health.success_rate == 1.0
        assert health.status == HealthStatus.HEALTHY
        assert health.circuit_state == CircuitState.OPEN

    def test_reset_all(self, tracker):
        tracker.record_outcome("primary-llm", success=False)
        tracker.record_probe("local-inference", reachable=False)

        tracker.reset()

        assert all(h.status == HealthStatus.HEALTHY for h in tracker.all_health().values())

    def test_to_dict(self):
        data = ProviderHealth(provider="primary-llm").to_dict()

        assert data["status"] == "healthy"
        assert data["circuit_state"] == "closed"
        assert data["last_checked_at"] is None
        assert data["last_error"] is None
