"""Tests for bounded exponential retry."""

from unittest.mock import AsyncMock, patch

import pytest

from imagegate.gateway.provider import ProviderError
from imagegate.gateway.retry import backoff_delay_ms, is_rate_limit_error, is_transient_error, with_retry
from imagegate.gateway.types import ProviderErrorKind


class _Flaky:
    def __init__(self, failures: list[Exception], value="ok"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


class TestClassification:
    @pytest.mark.parametrize(
        "message",
        ["Rate limit exceeded", "HTTP 429 Too Many Requests", "Request was THROTTLED"],
    )
    def test_rate_limit_messages(self, message):
        assert is_rate_limit_error(message)

    def test_other_messages(self):
        assert not is_rate_limit_error("invalid image")

    def test_structured_kind_wins_over_message(self):
        # Message mentions 429 but the transport says it was a timeout
        err = ProviderError("timed out after 429ms", kind=ProviderErrorKind.TIMEOUT)
        assert not is_transient_error(err)
        assert is_transient_error(ProviderError("slow down", kind=ProviderErrorKind.RATE_LIMITED))

    def test_fallback_to_message(self):
        assert is_transient_error(RuntimeError("429 from upstream"))
        assert not is_transient_error(RuntimeError("boom"))

    def test_backoff_is_exponential(self):
        assert [backoff_delay_ms(a, 5000) for a in range(3)] == [5000, 10000, 20000]


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_two_rate_limits(self):
        fn = _Flaky([RuntimeError("429"), RuntimeError("429")], value="done")
        observed: list[tuple[int, int]] = []

        with patch("imagegate.gateway.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await with_retry(
                fn,
                max_retries=3,
                base_delay_ms=5000,
                on_retry=lambda attempt, delay, err: observed.append((attempt, delay)),
            )

        assert result == "done"
        assert fn.calls == 3
        assert observed == [(1, 5000), (2, 10000)]
        assert [c.args[0] for c in mock_sleep.await_args_list] == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        err = ValueError("bad input")
        fn = _Flaky([err])

        with patch("imagegate.gateway.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            with pytest.raises(ValueError) as exc_info:
                await with_retry(fn)

        assert exc_info.value is err
        assert fn.calls == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        errors = [RuntimeError(f"429 #{i}") for i in range(4)]
        fn = _Flaky(errors)

        with patch("imagegate.gateway.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RuntimeError, match="429 #3"):
                await with_retry(fn, max_retries=3, base_delay_ms=10)

        assert fn.calls == 4

    @pytest.mark.asyncio
    async def test_custom_classifier(self):
        fn = _Flaky([KeyError("x")], value=42)

        with patch("imagegate.gateway.retry.asyncio.sleep", new=AsyncMock()):
            result = await with_retry(fn, should_retry=lambda e: isinstance(e, KeyError))

        assert result == 42
        assert fn.calls == 2

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        fn = _Flaky([RuntimeError("rate limit")])
        with pytest.raises(RuntimeError):
            await with_retry(fn, max_retries=0)
        assert fn.calls == 1
