from collections import deque
from dataclasses import dataclass, field


@dataclass
class BucketState:
    capacity: int
    window_ms: int
    tokens_available: float
    last_refill: float
    # timestamps of the most recent grants, at most `capacity` of them
    recent_grants: deque = field(default_factory=deque)

    @property
    def window_s(self) -> float:
        return self.window_ms / 1000.0

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens_available = min(
            float(self.capacity),
            self.tokens_available + elapsed / self.window_s * self.capacity,
        )
        self.last_refill = now

    def _trim(self, now: float) -> None:
        while self.recent_grants and now - self.recent_grants[0] >= self.window_s:
            self.recent_grants.popleft()

    def can_grant(self, now: float) -> bool:
        self._trim(now)
        return self.tokens_available >= 1 and len(self.recent_grants) < self.capacity

    def grant(self, now: float) -> None:
        self.tokens_available = max(0.0, self.tokens_available - 1)
        self.recent_grants.append(now)
        if len(self.recent_grants) > self.capacity:
            self.recent_grants.popleft()
