# ABOUTME: Safety guards for mutating operations on cluster repositories
# ABOUTME: Implements read-only mode and per-repository rate limiting

"""Safety utilities guarding mutations of desired-state repositories."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from gitops_api.config import SafetySettings

logger = structlog.get_logger(__name__)


@dataclass
class OperationBlocked:
    """Response indicating operation is blocked by safety settings."""

    operation: str
    target: str
    reason: str
    setting: str

    def format_message(self) -> str:
        """Format blocked message for callers."""
        return (
            f"OPERATION BLOCKED: {self.operation} on {self.target}\n"
            f"Reason: {self.reason}\n"
            f"Setting: {self.setting}"
        )


class RateLimiter:
    """Sliding-window rate limiter keyed by arbitrary strings."""

    def __init__(self, max_calls: int = 30, window_seconds: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            max_calls: Maximum calls allowed in window
            window_seconds: Window size in seconds
        """
        self._max_calls = max_calls
        self._window = window_seconds
        self._calls: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> bool:
        """Record a call for key and report whether it is allowed.

        Args:
            key: Rate limit key (e.g., "change_cluster_state:acme/prod")

        Returns:
            True if allowed, False if rate limited
        """
        now = time.time()
        self._expire(now)
        calls = self._calls[key]

        if len(calls) >= self._max_calls:
            logger.warning("Rate limit exceeded", key=key, calls=len(calls))
            return False

        calls.append(now)
        return True

    def _expire(self, now: float) -> None:
        """Drop timestamps outside the window, and keys left without any."""
        for key in list(self._calls):
            recent = [t for t in self._calls[key] if now - t < self._window]
            if recent:
                self._calls[key] = recent
            else:
                del self._calls[key]

    def reset(self, key: str | None = None) -> None:
        """Reset rate limit counters for one key, or all keys."""
        if key:
            self._calls.pop(key, None)
        else:
            self._calls.clear()


class SafetyGuard:
    """Decides whether a mutation may proceed."""

    def __init__(self, settings: SafetySettings) -> None:
        self._settings = settings
        self._rate_limiter = RateLimiter(
            max_calls=settings.rate_limit_calls,
            window_seconds=settings.rate_limit_window,
        )

    def check_mutation(self, operation: str, repository: str) -> OperationBlocked | None:
        """Check if a mutation of repository is allowed.

        Args:
            operation: Operation name
            repository: Target repository as owner/name

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if self._settings.read_only:
            return OperationBlocked(
                operation=operation,
                target=repository,
                reason="Service is running in read-only mode",
                setting="GITOPS_SAFETY_READ_ONLY",
            )

        if not self._rate_limiter.check(f"{operation}:{repository}"):
            return OperationBlocked(
                operation=operation,
                target=repository,
                reason="Rate limit exceeded",
                setting="GITOPS_SAFETY_RATE_LIMIT_CALLS",
            )

        return None
