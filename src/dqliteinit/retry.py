"""Polling utilities with a fixed interval and a hard deadline."""

import asyncio
import time
from collections.abc import Awaitable, Callable


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    timeout: float,
    interval: float = 1.0,
    cancel: asyncio.Event | None = None,
) -> bool:
    """Call ``check`` every ``interval`` seconds until it returns True.

    Args:
        check: Async predicate to poll
        timeout: Overall deadline in seconds
        interval: Delay between attempts in seconds
        cancel: Event that aborts polling when set

    Returns:
        True once ``check`` succeeds, False when the deadline passes or
        polling is cancelled
    """
    deadline = time.monotonic() + timeout

    while True:
        if cancel is not None and cancel.is_set():
            return False

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False

        try:
            async with asyncio.timeout(remaining):
                if await check():
                    return True
        except TimeoutError:
            return False

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False

        if await wait_for_event(cancel, min(interval, remaining)):
            return False


async def wait_for_event(event: asyncio.Event | None, timeout: float) -> bool:
    """Sleep up to ``timeout`` seconds, returning early if ``event`` is set.

    Returns True when the event was set.
    """
    if event is None:
        await asyncio.sleep(timeout)
        return False

    try:
        async with asyncio.timeout(timeout):
            await event.wait()
    except TimeoutError:
        return False
    return True
