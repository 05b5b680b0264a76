"""In-memory rate limiting keyed by operation and actor.

This throttles repeated attempts; it is not a correctness mechanism. State
lives in the process, so separate workers keep separate counters.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

logger = structlog.get_logger(__name__)

# Entries older than this are dropped by cleanup()
_STALE_AFTER_SECONDS = 3600.0


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_seconds: float
    # Defaults to twice the window when unset
    block_seconds: float | None = None

    @property
    def effective_block_seconds(self) -> float:
        if self.block_seconds is not None:
            return self.block_seconds
        return self.window_seconds * 2


class RateLimits:
    """Predefined limits for sensitive operations."""

    PAYROLL_GENERATION = RateLimitConfig(max_attempts=3, window_seconds=3600.0)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int
    reset_at: datetime | None = None
    blocked_until: datetime | None = None


@dataclass
class _Entry:
    attempts: int
    first_attempt: float
    blocked: bool = False
    block_expiry: float | None = None


def rate_limit_key(operation: str, actor_id: str | None) -> str:
    """Build the key for an (operation, actor) pair."""
    return f"{operation}:{actor_id or 'anonymous'}"


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RateLimiter:
    """Count attempts per key inside a sliding-from-first-attempt window."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def check(self, key: str, config: RateLimitConfig) -> RateLimitDecision:
        """Register an attempt for ``key`` and decide whether it may proceed."""
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and entry.blocked and entry.block_expiry is not None:
            if now < entry.block_expiry:
                return RateLimitDecision(
                    allowed=False,
                    remaining_attempts=0,
                    blocked_until=_to_datetime(entry.block_expiry),
                )
            # Block expired
            entry = None

        if entry is None or now - entry.first_attempt > config.window_seconds:
            self._entries[key] = _Entry(attempts=1, first_attempt=now)
            return RateLimitDecision(
                allowed=True,
                remaining_attempts=config.max_attempts - 1,
                reset_at=_to_datetime(now + config.window_seconds),
            )

        entry.attempts += 1
        if entry.attempts > config.max_attempts:
            entry.blocked = True
            entry.block_expiry = now + config.effective_block_seconds
            logger.warning(
                "rate_limit_exceeded",
                key=key,
                attempts=entry.attempts,
                blocked_until=_to_datetime(entry.block_expiry).isoformat(),
            )
            return RateLimitDecision(
                allowed=False,
                remaining_attempts=0,
                blocked_until=_to_datetime(entry.block_expiry),
            )

        return RateLimitDecision(
            allowed=True,
            remaining_attempts=config.max_attempts - entry.attempts,
            reset_at=_to_datetime(entry.first_attempt + config.window_seconds),
        )

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        """Drop stale and expired entries; return how many were removed."""
        now = self._clock()
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.first_attempt > _STALE_AFTER_SECONDS
            or (entry.blocked and entry.block_expiry is not None and now > entry.block_expiry)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)
