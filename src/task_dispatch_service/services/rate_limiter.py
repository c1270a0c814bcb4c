"""In-process sliding-window rate limiting."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Any

from task_dispatch_service.core.exceptions import RateLimitedError
from task_dispatch_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from task_dispatch_service.services.platform_config import PlatformConfigProvider

ONE_MINUTE_SECONDS = 60.0
DEFAULT_IP_LIMIT = 60
DEFAULT_WORKER_LIMIT = 30


def _first_limit(rule: dict[str, Any], keys: tuple[str, ...], default: int) -> int:
    for key in keys:
        if rule.get(key) is not None:
            return int(rule[key])
    return default


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single rate limit check."""

    allowed: bool
    remaining: int
    reset_seconds: float


class SlidingWindowRateLimiter:
    """
    Per-(operation, identifier) sliding window counter.

    State is process-local; each replica enforces its own windows.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval_seconds: float = ONE_MINUTE_SECONDS,
    ) -> None:
        self._clock = clock
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._windows: dict[str, tuple[list[float], float]] = {}
        self._last_cleanup = clock()
        self._lock = Lock()

    def check(
        self,
        operation: str,
        identifier: str,
        limit: int,
        window_seconds: float = ONE_MINUTE_SECONDS,
    ) -> RateLimitResult:
        now = self._clock()
        key = f"{operation}:{identifier}"
        with self._lock:
            self._maybe_cleanup(now)
            stamps, _window = self._windows.get(key, ([], window_seconds))
            stamps = [stamp for stamp in stamps if now - stamp < window_seconds]

            if len(stamps) >= limit:
                self._windows[key] = (stamps, window_seconds)
                reset_seconds = stamps[0] + window_seconds - now if stamps else window_seconds
                return RateLimitResult(allowed=False, remaining=0, reset_seconds=reset_seconds)

            stamps.append(now)
            self._windows[key] = (stamps, window_seconds)
            return RateLimitResult(
                allowed=True,
                remaining=limit - len(stamps),
                reset_seconds=stamps[0] + window_seconds - now,
            )

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval_seconds:
            return
        self._last_cleanup = now
        stale = [
            key
            for key, (stamps, window_seconds) in self._windows.items()
            if not stamps or now - stamps[-1] >= window_seconds
        ]
        for key in stale:
            del self._windows[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)


class RateLimitEnforcer:
    """Applies configured per-minute rules to IP and worker-token identities."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        config_provider: PlatformConfigProvider,
    ) -> None:
        self._limiter = limiter
        self._config_provider = config_provider
        self._logger = get_logger(__name__)

    def enforce_ip(self, operation: str, ip_address: str) -> None:
        """Raise RateLimitedError once an IP exceeds the operation's limit."""
        rule = self._config_provider.rate_limit_rule(operation)
        if rule is None:
            return
        limit = _first_limit(rule, ("per_ip_per_min", "per_min"), DEFAULT_IP_LIMIT)
        self._enforce(operation, operation, ip_address, limit)

    def enforce_worker(self, operation: str, token_hash: str) -> None:
        """Raise RateLimitedError once a worker token exceeds the operation's limit."""
        rule = self._config_provider.rate_limit_rule(operation)
        if rule is None:
            return
        limit = _first_limit(rule, ("established_per_min", "per_min"), DEFAULT_WORKER_LIMIT)
        self._enforce(operation, f"{operation}:token", token_hash, limit)

    def _enforce(self, operation: str, bucket: str, identifier: str, limit: int) -> None:
        result = self._limiter.check(bucket, identifier, limit)
        if not result.allowed:
            retry_after = max(1, math.ceil(result.reset_seconds))
            self._logger.info(
                "Rate limit exceeded",
                extra={"operation": operation, "limit": limit, "retry_after": retry_after},
            )
            raise RateLimitedError(operation, retry_after)
