"""
Unit tests for the retry decorator.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

from unittest.mock import AsyncMock, patch

import pytest

from dataservice.core.retry import retry_with_backoff


@pytest.mark.asyncio
class TestRetryWithBackoff:

    async def test_returns_after_transient_failures(self):
        """
        Test success after two failures.

        Arrange: Function failing twice then succeeding; sleep patched
        Act: Call decorated function
        Assert: Result returned, three attempts, two sleeps
        """
        # Arrange
        attempts = []

        @retry_with_backoff(max_retries=3, base_delay=1.0, jitter=False)
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("down")
            return "ok"

        # Act
        with patch("dataservice.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await flaky()

        # Assert
        assert result == "ok"
        assert len(attempts) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    async def test_raises_after_last_attempt(self):
        @retry_with_backoff(max_retries=1, base_delay=0.01, jitter=False)
        async def broken():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await broken()

    async def test_other_exceptions_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0.01, exceptions=(ConnectionError,))
        async def wrong():
            calls.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            await wrong()

        assert len(calls) == 1

    async def test_delay_capped(self):
        @retry_with_backoff(max_retries=2, base_delay=10.0, max_delay=12.0, jitter=False)
        async def broken():
            raise ConnectionError("down")

        with patch("dataservice.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ConnectionError):
                await broken()

        assert [call.args[0] for call in sleep.await_args_list] == [10.0, 12.0]
