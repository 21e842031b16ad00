"""Tests for RetryPolicy."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from npmsentinel.core.retry import STATE_COMMIT_RETRY, RetryPolicy


class TestDelay:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=False)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)
        assert policy.delay_for(10) == 5.0

    def test_full_jitter_within_bounds(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0, jitter=True)
        for _ in range(50):
            assert 0 <= policy.delay_for(3) <= 8.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestCall:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        fn = AsyncMock(return_value="ok")
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await RetryPolicy().call(fn, 1, key="v") == "ok"
        fn.assert_awaited_once_with(1, key="v")
        mock_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        fn = AsyncMock(side_effect=[OSError("disk"), OSError("disk"), "ok"])
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await RetryPolicy(max_attempts=3).call(fn) == "ok"
        assert fn.await_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_last_exception_when_exhausted(self):
        fn = AsyncMock(side_effect=[OSError("first"), OSError("second")])
        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(OSError, match="second"):
                await RetryPolicy(max_attempts=2).call(fn)
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_non_matching_exception_propagates_immediately(self):
        fn = AsyncMock(side_effect=KeyError("nope"))
        policy = RetryPolicy(max_attempts=5, retry_on=(OSError,))
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(KeyError):
                await policy.call(fn)
        fn.assert_awaited_once()
        mock_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_attempt_policy_tries_once(self):
        fn = AsyncMock(side_effect=OSError("x"))
        with pytest.raises(OSError):
            await RetryPolicy(max_attempts=1).call(fn)
        fn.assert_awaited_once()

    def test_state_commit_policy_retries_any_exception(self):
        assert STATE_COMMIT_RETRY.max_attempts == 3
        assert STATE_COMMIT_RETRY.retry_on == (Exception,)
