"""Tests for retry with exponential backoff."""

import pytest

from outreach_engine.core.retry import backoff_delay, with_retry


class Flaky(Exception):
    pass


class Fatal(Exception):
    pass


def test_backoff_delay_doubles_and_caps():
    delays = [backoff_delay(n, 1.0, 5.0, jitter=0.3, rand=lambda: 0.0) for n in range(5)]

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_delay_jitter_bounds():
    assert backoff_delay(1, 1.0, 30.0, jitter=0.3, rand=lambda: 1.0) == pytest.approx(2.6)


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_errors():
    attempts = []
    sleeps = []

    async def fn():
        attempts.append(1)
        if len(attempts) < 3:
            raise Flaky("try again")
        return "ok"

    async def sleep(delay):
        sleeps.append(delay)

    result = await with_retry(fn, lambda e: isinstance(e, Flaky), max_retries=3, sleep=sleep)

    assert result == "ok"
    assert len(attempts) == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0] * 1.2


@pytest.mark.asyncio
async def test_with_retry_gives_up_after_budget():
    attempts = []

    async def fn():
        attempts.append(1)
        raise Flaky("still down")

    async def sleep(delay):
        return None

    with pytest.raises(Flaky):
        await with_retry(fn, lambda e: isinstance(e, Flaky), max_retries=2, sleep=sleep)

    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_fatal_errors():
    attempts = []

    async def fn():
        attempts.append(1)
        raise Fatal("bad request")

    async def sleep(delay):
        raise AssertionError("should not sleep")

    with pytest.raises(Fatal):
        await with_retry(fn, lambda e: isinstance(e, Flaky), sleep=sleep)

    assert len(attempts) == 1
