import asyncio

import pytest

from protokoll.errors import FailureKind, RecognitionFailure
from protokoll.session.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, kind=FailureKind.TRANSIENT):
        self.failures = failures
        self.kind = kind
        self.attempts = 0

    async def __call__(self, value):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RecognitionFailure(self.kind, f"attempt {self.attempts}")
        return value


def test_succeeds_within_budget():
    flaky = Flaky(failures=2)
    result = asyncio.run(RetryPolicy(max_retries=2, backoff_seconds=0).run(flaky, "ok"))

    assert result == "ok"
    assert flaky.attempts == 3


def test_gives_up_after_max_retries():
    flaky = Flaky(failures=10)

    with pytest.raises(RecognitionFailure):
        asyncio.run(RetryPolicy(max_retries=2, backoff_seconds=0).run(flaky, "ok"))

    assert flaky.attempts == 3


@pytest.mark.parametrize("kind", [FailureKind.AUTH, FailureKind.QUOTA, FailureKind.MALFORMED])
def test_permanent_failures_fail_fast(kind):
    flaky = Flaky(failures=1, kind=kind)

    with pytest.raises(RecognitionFailure) as info:
        asyncio.run(RetryPolicy(max_retries=2, backoff_seconds=0).run(flaky, "ok"))

    assert info.value.kind == kind
    assert flaky.attempts == 1


def test_unclassified_errors_are_not_retried():
    attempts = []

    async def broken():
        attempts.append(1)
        raise ValueError("bug")

    with pytest.raises(ValueError):
        asyncio.run(RetryPolicy(backoff_seconds=0).run(broken))

    assert len(attempts) == 1


def test_from_settings(settings):
    settings.transcribe_retries = 4
    policy = RetryPolicy.from_settings(settings)

    assert policy.max_retries == 4
    assert policy.backoff_seconds == 0.0
    assert policy.retry_on == frozenset({FailureKind.TRANSIENT})
