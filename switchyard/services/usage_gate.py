"""Per-provider request-rate and daily-quota gates.

These gates run before a call is dispatched. A rejected gate never consumes
a retry; the orchestrator either falls back or, in strict mode, fails.

- Rate limit: sliding window of request timestamps (default 60 s) compared
  against ProviderQuota.requests_per_minute. A permitted check consumes a slot.
- Quota: daily token usage and estimated cost compared against
  daily_token_limit and daily_cost_limit. Counters reset at UTC midnight.

Usage:
    gate = UsageGate(config.quotas)
    if not gate.try_acquire("primary-llm"):
        raise RateLimitGateError("primary-llm")
    ...
    gate.record_usage("primary-llm", tokens=1200)
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

from switchyard.config import ProviderQuota
from switchyard.core.constants import RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class ProviderUsage:
    """In-memory usage counters for one provider."""

    day: date
    tokens: int = 0
    requests: int = 0

    def cost(self, quota: Optional[ProviderQuota]) -> float:
        if quota is None:
            return 0.0
        return self.tokens * quota.cost_per_token


class UsageGate:
    """Rate-limit window and daily quota tracking per provider.

    Providers without a quota entry are unlimited.
    """

    def __init__(
        self,
        quotas: Optional[Dict[str, ProviderQuota]] = None,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = _utc_today,
    ):
        self.quotas: Dict[str, ProviderQuota] = dict(quotas or {})
        self.window_seconds = window_seconds
        self.clock = clock
        self.today = today
        self._windows: Dict[str, Deque[float]] = {}
        self._usage: Dict[str, ProviderUsage] = {}
        self._lock = threading.Lock()

    def _usage_for(self, provider: str) -> ProviderUsage:
        today = self.today()
        usage = self._usage.get(provider)
        if usage is None or usage.day != today:
            usage = self._usage[provider] = ProviderUsage(day=today)
        return usage

    def _prune(self, provider: str) -> Deque[float]:
        window = self._windows.setdefault(provider, deque())
        cutoff = self.clock() - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        return window

    def try_acquire(self, provider: str) -> bool:
        """Take a slot in the provider's request window if one is free."""
        quota = self.quotas.get(provider)
        with self._lock:
            if quota is None or not quota.requests_per_minute:
                self._usage_for(provider).requests += 1
                return True

            window = self._prune(provider)
            if len(window) >= quota.requests_per_minute:
                logger.warning(
                    f"Rate limit window full for {provider}: {len(window)}/{quota.requests_per_minute} "
                    f"in {self.window_seconds:g}s"
                )
                return False
            window.append(self.clock())
            self._usage_for(provider).requests += 1
            return True

    def within_rate_limit(self, provider: str) -> bool:
        """Non-consuming check of the request window."""
        quota = self.quotas.get(provider)
        if quota is None or not quota.requests_per_minute:
            return True
        with self._lock:
            return len(self._prune(provider)) < quota.requests_per_minute

    def check_quota(self, provider: str) -> bool:
        """Whether daily token and cost usage are below the limits."""
        quota = self.quotas.get(provider)
        if quota is None:
            return True
        with self._lock:
            usage = self._usage_for(provider)
            if quota.daily_token_limit is not None and usage.tokens >= quota.daily_token_limit:
                return False
            if quota.daily_cost_limit is not None and usage.cost(quota) >= quota.daily_cost_limit:
                return False
            return True

    def record_usage(self, provider: str, tokens: int) -> None:
        """Add consumed tokens to today's counters."""
        if tokens <= 0:
            return
        with self._lock:
            self._usage_for(provider).tokens += tokens

    def status(self, provider: str) -> Dict[str, Any]:
        """Usage snapshot for diagnostics."""
        quota = self.quotas.get(provider)
        within_rate = self.within_rate_limit(provider)
        within_quota = self.check_quota(provider)
        with self._lock:
            usage = self._usage_for(provider)
            remaining = None
            if quota is not None and quota.daily_token_limit is not None:
                remaining = max(0, quota.daily_token_limit - usage.tokens)
            return {
                "within_rate_limit": within_rate,
                "within_quota": within_quota,
                "quota_remaining": remaining,
                "estimated_cost": round(usage.cost(quota), 6) if quota and quota.cost_per_token else None,
                "tokens_today": usage.tokens,
                "requests_today": usage.requests,
            }

    def update_quotas(self, quotas: Dict[str, ProviderQuota]) -> None:
        with self._lock:
            self.quotas = dict(quotas)

    def reset(self, provider: Optional[str] = None) -> None:
        with self._lock:
            if provider is None:
                self._windows.clear()
                self._usage.clear()
            else:
                self._windows.pop(provider, None)
                self._usage.pop(provider, None)
