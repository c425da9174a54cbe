"""Shared token-bucket gate on outbound request dispatch."""

from __future__ import annotations

from aiolimiter import AsyncLimiter


class RateLimiter:
    """Admit at most ``rate`` operations per second, evenly spaced.

    The bucket holds a single token that refills every ``1 / rate`` seconds,
    so bursts are not allowed to build up while the pipeline is idle. One
    instance is shared by reference across a whole run; ``take()`` is safe to
    call from any number of concurrent tasks.
    """

    def __init__(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be > 0, got {rate}")
        self._rate = rate
        self._limiter = AsyncLimiter(max_rate=1, time_period=1.0 / rate)

    @property
    def rate(self) -> float:
        return self._rate

    async def take(self) -> None:
        """Suspend until a token is available, then consume it."""
        await self._limiter.acquire()
