# tests/test_retry.py
import asyncio

import pytest

from tweetpulse.core.retry import RetryPolicy, ledger_policy, retry_async, transport_policy
from tweetpulse.core.utils import chunked


class Flaky:
    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error("transient")
        return "ok"


def _no_sleep():
    slept = []

    async def sleep(seconds):
        slept.append(seconds)

    return sleep, slept


def test_retries_until_success():
    sleep, slept = _no_sleep()
    op = Flaky(failures=2)
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False)

    assert asyncio.run(retry_async(op, policy, sleep=sleep)) == "ok"
    assert op.calls == 3
    assert slept == [1.0, 2.0]


def test_gives_up_after_max_attempts():
    sleep, slept = _no_sleep()
    op = Flaky(failures=5)

    with pytest.raises(ConnectionError):
        asyncio.run(retry_async(op, RetryPolicy(max_attempts=2, jitter=False), sleep=sleep))
    assert op.calls == 2
    assert len(slept) == 1


def test_non_retryable_error_raises_immediately():
    sleep, slept = _no_sleep()
    op = Flaky(failures=1, error=ValueError)

    with pytest.raises(ValueError):
        asyncio.run(
            retry_async(
                op,
                RetryPolicy(max_attempts=5),
                is_retryable=lambda e: isinstance(e, ConnectionError),
                sleep=sleep,
            )
        )
    assert op.calls == 1
    assert slept == []


def test_backoff_is_capped():
    policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=5.0, jitter=False)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_transport_and_ledger_policies():
    assert transport_policy(3).max_attempts == 4
    ledger = ledger_policy(3)
    assert not ledger.exhausted(2)
    assert ledger.exhausted(3)


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))
