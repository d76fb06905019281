"""Tests for UsageGate: sliding request window and daily token/cost quotas."""

from datetime import date

import pytest

from switchyard.config import ProviderQuota, default_quotas
from switchyard.services.usage_gate import UsageGate

from tests.conftest import FakeClock


class FakeCalendar:
    def __init__(self, day=date(2025, 3, 1)):
        self.day = day

    def __call__(self):
        return self.day


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def calendar():
    return FakeCalendar()


def make_gate(clock, calendar, **quota):
    return UsageGate({"primary-llm": ProviderQuota(**quota)}, window_seconds=60, clock=clock, today=calendar)


@pytest.mark.unit
class TestRateWindow:
    def test_allows_up_to_limit_then_rejects(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=3)

        assert [gate.try_acquire("primary-llm") for _ in range(4)] == [True, True, True, False]
        assert gate.within_rate_limit("primary-llm") is False

    def test_window_slides(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=2)
        gate.try_acquire("primary-llm")
        clock.advance(30)
        gate.try_acquire("primary-llm")
        assert gate.try_acquire("primary-llm") is False

        clock.advance(30.5)

        assert gate.try_acquire("primary-llm") is True

    def test_rejected_acquire_does_not_count_request(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=1)
        gate.try_acquire("primary-llm")
        gate.try_acquire("primary-llm")

        assert gate.status("primary-llm")["requests_today"] == 1

    def test_within_rate_limit_does_not_consume(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=1)

        assert gate.within_rate_limit("primary-llm")
        assert gate.within_rate_limit("primary-llm")
        assert gate.try_acquire("primary-llm")

    def test_provider_without_quota_is_unlimited(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=1)

        assert all(gate.try_acquire("local-inference") for _ in range(100))
        assert gate.check_quota("local-inference")


@pytest.mark.unit
class TestDailyQuota:
    def test_token_limit(self, clock, calendar):
        gate = make_gate(clock, calendar, daily_token_limit=1_000)
        gate.record_usage("primary-llm", 999)
        assert gate.check_quota("primary-llm")

        gate.record_usage("primary-llm", 1)

        assert gate.check_quota("primary-llm") is False

    def test_cost_limit(self, clock, calendar):
        gate = make_gate(clock, calendar, daily_cost_limit=1.0, cost_per_token=0.001)
        gate.record_usage("primary-llm", 999)
        assert gate.check_quota("primary-llm")

        gate.record_usage("primary-llm", 1)

        assert gate.check_quota("primary-llm") is False

    def test_counters_reset_on_new_utc_day(self, clock, calendar):
        gate = make_gate(clock, calendar, daily_token_limit=10)
        gate.record_usage("primary-llm", 10)
        assert gate.check_quota("primary-llm") is False

        calendar.day = date(2025, 3, 2)

        assert gate.check_quota("primary-llm") is True
        assert gate.status("primary-llm")["tokens_today"] == 0

    def test_non_positive_usage_ignored(self, clock, calendar):
        gate = make_gate(clock, calendar, daily_token_limit=10)
        gate.record_usage("primary-llm", 0)
        gate.record_usage("primary-llm", -5)

        assert gate.status("primary-llm")["tokens_today"] == 0


@pytest.mark.unit
class TestStatusAndUpdates:
    def test_status_snapshot(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=10, daily_token_limit=1_000, cost_per_token=0.01)
        gate.try_acquire("primary-llm")
        gate.record_usage("primary-llm", 100)

        status = gate.status("primary-llm")

        assert status == {
            "within_rate_limit": True,
            "within_quota": True,
            "quota_remaining": 900,
            "estimated_cost": 1.0,
            "tokens_today": 100,
            "requests_today": 1,
        }

    def test_update_quotas(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=1)
        gate.try_acquire("primary-llm")

        gate.update_quotas({"primary-llm": ProviderQuota(requests_per_minute=5)})

        assert gate.try_acquire("primary-llm")

    def test_reset_single_provider(self, clock, calendar):
        gate = make_gate(clock, calendar, requests_per_minute=1)
        gate.try_acquire("primary-llm")

        gate.reset("primary-llm")

        assert gate.try_acquire("primary-llm")

    def test_default_quotas_cover_builtin_providers(self):
        quotas = default_quotas()

        assert set(quotas) == {"primary-llm", "enterprise-gateway", "community-inference", "local-inference"}
        assert quotas["enterprise-gateway"].daily_cost_limit == 500
