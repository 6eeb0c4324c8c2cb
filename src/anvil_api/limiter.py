import asyncio
import logging
import threading
import time
from typing import Union

from .state import BucketState
from .types import RateLimitConfig

# Minimum seconds between two "waiting out the window" log lines
WAIT_NOTICE_INTERVAL = 5.0


# ---------- Base bucket (shared logic; synchronization handled by subclasses) ----------


class _TokenBucket:
    def __init__(self, config: Union[RateLimitConfig, None] = None, log_level: Union[int, None] = None):
        """Initialize a token bucket.

        Args:
            config (RateLimitConfig | None): capacity and window; defaults to the
                production quota of 200 requests per 5000 ms
            log_level (int | None): level for the package logger
        """
        self.config = config or RateLimitConfig()
        self._logger = logging.getLogger("anvil_api")
        if log_level is not None:
            self._logger.setLevel(log_level)
        self.state = BucketState(
            capacity=self.config.capacity,
            window_ms=self.config.window_ms,
            tokens_available=float(self.config.capacity),
            last_refill=self._now(),
        )
        self._wait_notice = 0.0

    def _now(self) -> float:
        return time.monotonic()

    @property
    def fallback_wait_s(self) -> float:
        return (self.config.window_ms + self.config.safety_margin_ms) / 1000.0

    def _try_grant(self) -> bool:
        now = self._now()
        self.state.refill(now)
        if self.state.can_grant(now):
            self.state.grant(now)
            return True
        return False

    def _notice_wait(self):
        now = self._now()
        if self._wait_notice <= now:
            self._logger.info(
                f"rate limit reached capacity={self.config.capacity} "
                f"window_ms={self.config.window_ms}; waiting {self.fallback_wait_s:.2f}s"
            )
            self._wait_notice = now + WAIT_NOTICE_INTERVAL


# ---------- Sync limiter (threads) ----------


class RateLimiter(_TokenBucket):
    """Token bucket shared by threads; callers are served strictly in arrival order."""

    def __init__(self, config: Union[RateLimitConfig, None] = None, log_level: Union[int, None] = None):
        super().__init__(config, log_level)
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        # tickets whose holder gave up while queued
        self._abandoned: set[int] = set()

    def _sleep(self, seconds: float):
        time.sleep(seconds)

    def _advance(self):
        # caller holds self._cond
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()

    def acquire_token(self) -> None:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            try:
                while ticket != self._serving:
                    self._cond.wait()
            except BaseException:
                if ticket == self._serving:
                    self._advance()
                else:
                    self._abandoned.add(ticket)
                raise
        try:
            # Only the head ticket gets here, so the bucket has a single updater.
            while not self._try_grant():
                self._notice_wait()
                self._sleep(self.fallback_wait_s)
        finally:
            with self._cond:
                self._advance()


# ---------- Async limiter (asyncio) ----------


class AsyncRateLimiter(_TokenBucket):
    """Token bucket for one event loop; asyncio.Lock hands out waiters FIFO."""

    def __init__(self, config: Union[RateLimitConfig, None] = None, log_level: Union[int, None] = None):
        super().__init__(config, log_level)
        self._lock = asyncio.Lock()

    async def _sleep(self, seconds: float):
        await asyncio.sleep(seconds)

    async def acquire_token(self) -> None:
        async with self._lock:
            while not self._try_grant():
                self._notice_wait()
                await self._sleep(self.fallback_wait_s)
