import pytest

from qualytics.errors import ConnectionFailedError, NotConnectedError, QueryError
from qualytics.retry import backoff_delay, retry_with_backoff


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _flaky(failures):
    calls = []

    async def fn():
        calls.append(1)
        if failures:
            raise failures.pop(0)
        return "ok"

    return fn, calls


def test_backoff_delay_is_capped():
    delays = [backoff_delay(n, initial_delay=1.0, max_delay=10.0, multiplier=2.0) for n in range(1, 7)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_retries_transient_failures():
    sleep = RecordingSleep()
    fn, calls = _flaky([ConnectionFailedError("network"), QueryError("timeout", retryable=True)])

    assert await retry_with_backoff(fn, sleep=sleep, context="overall-score") == "ok"
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    sleep = RecordingSleep()
    fn, calls = _flaky([ConnectionFailedError(f"attempt {i}") for i in range(5)])

    with pytest.raises(ConnectionFailedError, match="attempt 2"):
        await retry_with_backoff(fn, max_attempts=3, sleep=sleep)
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [NotConnectedError(), QueryError("syntax"), KeyError("x")])
async def test_non_retryable_errors_propagate_immediately(error):
    sleep = RecordingSleep()
    fn, calls = _flaky([error])

    with pytest.raises(type(error)):
        await retry_with_backoff(fn, sleep=sleep)
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_max_attempts_must_be_positive():
    fn, _ = _flaky([])
    with pytest.raises(ValueError):
        await retry_with_backoff(fn, max_attempts=0)
