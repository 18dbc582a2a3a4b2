"""Tests for RetryPolicy classification and backoff."""

import asyncio

import httpx
import pytest

from common.exceptions import AuthError, RateLimited, StorageRejected, TransientServerError, ValidationError
from orchestrator.retry_policy import FailureKind, RetryPolicy, classify_error

from conftest import RecordingSleep


class FlakyOperation:
    """Raises the scripted errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.fixture
def policy(sleeper):
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=8.0, sleep=sleeper, jitter=lambda: 0.0)


class TestClassification:
    """Tests for classify_error."""

    @pytest.mark.parametrize("error", [
        TransientServerError("503"),
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        asyncio.TimeoutError(),
        ConnectionResetError(),
    ])
    def test_transient(self, error):
        assert classify_error(error) is FailureKind.TRANSIENT

    def test_rate_limited(self):
        assert classify_error(RateLimited("429", retry_after=3)) is FailureKind.RATE_LIMITED

    @pytest.mark.parametrize("error", [
        AuthError("401"),
        StorageRejected("413", status_code=413),
        ValidationError("bad url"),
        ValueError("boom"),
    ])
    def test_permanent(self, error):
        assert classify_error(error) is FailureKind.PERMANENT


class TestRun:
    """Tests for RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_two_transient_failures_then_success(self, policy, sleeper):
        operation = FlakyOperation(TransientServerError("502"), httpx.ConnectError("refused"))

        result = await policy.run(operation)

        assert result == "ok"
        assert operation.calls == 3
        assert len(sleeper.delays) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, policy):
        operation = FlakyOperation(*(TransientServerError(f"fail {i}") for i in range(5)))

        with pytest.raises(TransientServerError, match="fail 2"):
            await policy.run(operation)

        assert operation.calls == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [AuthError("forbidden"), StorageRejected("too large", status_code=413)])
    async def test_permanent_failure_is_not_retried(self, policy, sleeper, error):
        operation = FlakyOperation(error)

        with pytest.raises(type(error)):
            await policy.run(operation)

        assert operation.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once_after_indicated_wait(self, policy, sleeper):
        operation = FlakyOperation(RateLimited("slow down", retry_after=2.5))

        assert await policy.run(operation) == "ok"
        assert operation.calls == 2
        assert sleeper.delays == [2.5]

    @pytest.mark.asyncio
    async def test_second_rate_limit_is_raised(self, policy):
        operation = FlakyOperation(RateLimited("slow down", retry_after=0), RateLimited("still slow", retry_after=0))

        with pytest.raises(RateLimited, match="still slow"):
            await policy.run(operation)

        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_custom_classifier(self, policy):
        operation = FlakyOperation(ValueError("flaky"))

        result = await policy.run(operation, classify=lambda e: FailureKind.TRANSIENT)

        assert result == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self):
        policy = RetryPolicy(max_attempts=1, sleep=RecordingSleep())
        operation = FlakyOperation(TransientServerError("down"))

        with pytest.raises(TransientServerError):
            await policy.run(operation)
        assert operation.calls == 1


class TestBackoff:
    """Tests for backoff_delay."""

    def test_exponential_growth_without_jitter(self, policy):
        assert [policy.backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_capped(self, policy):
        assert policy.backoff_delay(10) == 4.0

    def test_full_jitter_reaches_whole_step(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=8.0, jitter=lambda: 1.0)
        assert policy.backoff_delay(2) == 2.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
