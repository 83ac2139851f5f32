"""Tests for polling utilities."""

import asyncio
import time

from dqliteinit.retry import poll_until, wait_for_event


class TestPollUntil:
    async def test_success_first_try(self) -> None:
        call_count = 0

        async def success() -> bool:
            nonlocal call_count
            call_count += 1
            return True

        assert await poll_until(success, timeout=1.0, interval=0.01)
        assert call_count == 1

    async def test_success_after_retries(self) -> None:
        call_count = 0

        async def eventually() -> bool:
            nonlocal call_count
            call_count += 1
            return call_count >= 3

        assert await poll_until(eventually, timeout=1.0, interval=0.01)
        assert call_count == 3

    async def test_respects_deadline(self) -> None:
        async def never() -> bool:
            return False

        start = time.monotonic()
        result = await poll_until(never, timeout=0.3, interval=0.05)
        elapsed = time.monotonic() - start

        assert not result
        assert 0.3 <= elapsed < 0.6

    async def test_slow_check_bounded_by_deadline(self) -> None:
        async def hang() -> bool:
            await asyncio.sleep(10)
            return True

        start = time.monotonic()
        result = await poll_until(hang, timeout=0.2, interval=0.05)

        assert not result
        assert time.monotonic() - start < 1.0

    async def test_cancel_aborts_promptly(self) -> None:
        cancel = asyncio.Event()
        call_count = 0

        async def never() -> bool:
            nonlocal call_count
            call_count += 1
            return False

        asyncio.get_running_loop().call_later(0.05, cancel.set)
        start = time.monotonic()
        result = await poll_until(never, timeout=10.0, interval=1.0, cancel=cancel)

        assert not result
        assert time.monotonic() - start < 0.5
        assert call_count == 1

    async def test_already_cancelled(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        call_count = 0

        async def check() -> bool:
            nonlocal call_count
            call_count += 1
            return True

        assert not await poll_until(check, timeout=1.0, cancel=cancel)
        assert call_count == 0


class TestWaitForEvent:
    async def test_timeout(self) -> None:
        assert not await wait_for_event(asyncio.Event(), 0.01)

    async def test_event_set(self) -> None:
        event = asyncio.Event()
        event.set()
        assert await wait_for_event(event, 1.0)

    async def test_no_event_sleeps(self) -> None:
        start = time.monotonic()
        assert not await wait_for_event(None, 0.05)
        assert time.monotonic() - start >= 0.05
