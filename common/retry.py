from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

_LOG = logging.getLogger("bus")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base * 2**(attempt-1), capped, plus jitter."""
    attempts: int = 8
    base_secs: float = 0.1
    cap_secs: float = 5.0
    jitter_secs: float = 0.05

    @classmethod
    def from_settings(cls, bus) -> "RetryPolicy":
        return cls(attempts=bus.max_retries, base_secs=bus.backoff_base_secs, cap_secs=bus.backoff_cap_secs)

    def delay(self, attempt: int) -> float:
        d = min(self.cap_secs, self.base_secs * (2 ** max(0, attempt - 1)))
        return d + random.uniform(0, self.jitter_secs)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...],
    what: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Await func() until it succeeds or `policy.attempts` tries are used.

    Only exceptions in `retry_on` are retried; the last one is re-raised.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, policy.attempts)
    for i in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if i >= attempts:
                raise
            backoff = policy.delay(i)
            _LOG.warning("%s failed (%s); retry %d/%d in %.2fs", what, e, i, attempts - 1, backoff)
            await sleep(backoff)
    raise AssertionError("unreachable")
