"""Tests for retry utility (vulnrelay/utils/retry.py)."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vulnrelay.utils.retry import async_retry


@pytest.fixture
def mock_sleep():
    """Patch asyncio.sleep in the retry module so backoff is instant."""
    with patch("vulnrelay.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestRetryDecorator:
    """Tests for the retry decorator."""

    async def test_success_on_first_try(self, mock_sleep):
        """Test that function succeeds on first try without retrying."""
        call_count = 0

        @async_retry(max_attempts=3)
        async def successful_function():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await successful_function()
        assert result == "success"
        assert call_count == 1
        mock_sleep.assert_not_called()

    async def test_retry_on_failure(self, mock_sleep):
        """Test that function retries on failure."""
        call_count = 0

        @async_retry(max_attempts=3)
        async def failing_function():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = await failing_function()
        assert result == "success"
        assert call_count == 3

    async def test_max_retries_exceeded(self, mock_sleep):
        """Test that the last exception propagates after max attempts."""
        call_count = 0

        @async_retry(max_attempts=3)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise ConnectionError(f"failure {call_count}")

        with pytest.raises(ConnectionError, match="failure 3"):
            await always_failing()
        assert call_count == 3

    async def test_exponential_backoff(self, mock_sleep):
        """Test waits start at one second and grow by backoff_base."""

        @async_retry(max_attempts=4, backoff_base=2.0)
        async def always_failing():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_failing()

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0, 4.0]

    async def test_backoff_capped(self, mock_sleep):
        """Test waits never exceed backoff_max."""

        @async_retry(max_attempts=4, backoff_base=10.0, backoff_max=15.0)
        async def always_failing():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_failing()

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 10.0, 15.0]

    async def test_specific_exception_only(self, mock_sleep):
        """Test that only the listed exceptions are retried."""
        call_count = 0

        @async_retry(max_attempts=3, exceptions=(ConnectionError,))
        async def wrong_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("not retryable")

        with pytest.raises(ValueError):
            await wrong_error()
        assert call_count == 1

    async def test_on_retry_callback(self, mock_sleep):
        """Test the callback receives the exception and attempt number."""
        callback = MagicMock()
        error = ConnectionError("down")

        @async_retry(max_attempts=2, on_retry=callback)
        async def always_failing():
            raise error

        with pytest.raises(ConnectionError):
            await always_failing()

        callback.assert_called_once_with(error, 1)

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            async_retry(max_attempts=0)

    async def test_preserves_function_metadata(self):
        @async_retry()
        async def fetch_containers():
            """Fetch containers."""

        assert fetch_containers.__name__ == "fetch_containers"
        assert fetch_containers.__doc__ == "Fetch containers."
