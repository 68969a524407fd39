from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional


async def run_periodic(
    func: Callable[[], Awaitable[object]],
    interval: float,
    *,
    first_delay: float = 0.0,
    log: Optional[logging.Logger] = None,
    name: str = "tick",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> None:
    """Await func() after `first_delay`, then every `interval` seconds, until cancelled.

    An exception from one tick is logged and the schedule continues.
    """
    log = log or logging.getLogger(__name__)
    sleep = sleep or asyncio.sleep
    if first_delay > 0:
        await sleep(first_delay)
    while True:
        try:
            await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("%s failed: %s", name, e)
        await sleep(interval)
