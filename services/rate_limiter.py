"""
Per-identity sliding-window rate limiting.

The decision logic lives in RateLimiter; timestamps live in a window store
so a shared store can replace the in-process one without touching callers.
The clock is injected for tests.
"""
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None  # whole seconds, only set when denied


class InMemoryWindowStore:
    """Request timestamps per identity, oldest first."""

    def __init__(self):
        self._windows: Dict[str, Deque[float]] = {}

    def window(self, identity: str) -> Deque[float]:
        return self._windows.setdefault(identity, deque())

    def prune(self, cutoff: float) -> int:
        """Drop identities whose newest request is older than cutoff."""
        stale = [key for key, stamps in self._windows.items() if not stamps or stamps[-1] <= cutoff]
        for key in stale:
            del self._windows[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_sec: Optional[float] = None,
        store: Optional[InMemoryWindowStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self.window_sec = window_sec or settings.rate_limit_window_sec
        self.store = store if store is not None else InMemoryWindowStore()
        self.clock = clock
        self._last_prune = clock()

    def check(self, identity: str) -> RateLimitDecision:
        """Record a request for identity if it fits in the window."""
        now = self.clock()
        cutoff = now - self.window_sec
        self._maybe_prune(now, cutoff)

        stamps = self.store.window(identity)
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

        if len(stamps) >= self.max_requests:
            retry_after = max(1, math.ceil(stamps[0] + self.window_sec - now))
            logger.info(f"Rate limit exceeded for {identity}, retry in {retry_after}s")
            return RateLimitDecision(allowed=False, retry_after=retry_after)

        stamps.append(now)
        return RateLimitDecision(allowed=True)

    def _maybe_prune(self, now: float, cutoff: float) -> None:
        if now - self._last_prune < self.window_sec:
            return
        self._last_prune = now
        dropped = self.store.prune(cutoff)
        if dropped:
            logger.debug(f"Pruned {dropped} idle rate-limit windows")
