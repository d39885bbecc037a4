"""Rate Limiting: typed limit parsing and fixed-window counters.

Invariants:
    - parse_rate_limit runs at registration; requests only ever see RateLimit values
    - Unrecognized window units fall back to one minute
    - A window admits exactly `count` hits per caller; hit `count + 1` is rejected
    - Expired windows restart at the next hit (fixed window, not sliding)
"""

from dataclasses import dataclass, field

from autoregistry.core.domain_types import RateLimit

WINDOW_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
}

# Callers tracked before expired windows are swept
_SWEEP_AT = 10_000


def parse_window(unit: str) -> int:
    unit = unit.strip().lower()
    if unit.endswith("s") and unit[:-1] in WINDOW_SECONDS:
        unit = unit[:-1]
    return WINDOW_SECONDS.get(unit, WINDOW_SECONDS["minute"])


def parse_rate_limit(value: str | RateLimit | tuple | None) -> RateLimit | None:
    """Turn "100/hour", (100, 3600) or a RateLimit into a RateLimit.

    Raises ValueError for a malformed count.
    """
    if value is None or value == "":
        return None
    if isinstance(value, RateLimit):
        return value
    if isinstance(value, tuple):
        count, window = value
        return RateLimit(int(count), int(window))
    count_part, _, window_part = str(value).partition("/")
    count = int(count_part.strip())
    if count < 0:
        raise ValueError(f"Rate limit count must be non-negative: {value!r}")
    return RateLimit(count, parse_window(window_part or "minute"))


@dataclass
class _Window:
    started_at: float
    count: int = 0


@dataclass
class RateLimiterState:
    """Per-route limiter; callers are tracked independently inside it."""
    limit: RateLimit
    windows: dict[str, _Window] = field(default_factory=dict)

    def hit(self, caller: str, now: float) -> int | None:
        """Record one call. Returns None if allowed, else seconds to retry after."""
        window = self.windows.get(caller)
        if window is None or now - window.started_at >= self.limit.window_seconds:
            if len(self.windows) >= _SWEEP_AT:
                self._sweep(now)
            window = _Window(started_at=now)
            self.windows[caller] = window
        if window.count >= self.limit.count:
            return self.retry_after_seconds
        window.count += 1
        return None

    @property
    def retry_after_seconds(self) -> int:
        return max(1, self.limit.window_seconds)

    def _sweep(self, now: float) -> None:
        expired = [
            caller for caller, w in self.windows.items()
            if now - w.started_at >= self.limit.window_seconds
        ]
        for caller in expired:
            del self.windows[caller]
