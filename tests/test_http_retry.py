from unittest.mock import Mock, patch

import pytest
import requests

from ghlatest import http_retry


class TestTimeoutHTTPAdapter:
    """Test cases for TimeoutHTTPAdapter class."""

    def test_init_with_default_timeout(self):
        adapter = http_retry.TimeoutHTTPAdapter()
        assert adapter.timeout == http_retry.DEFAULT_TIMEOUT

    @patch("requests.adapters.HTTPAdapter.send")
    def test_send_applies_default_timeout(self, mock_super_send):
        adapter = http_retry.TimeoutHTTPAdapter(timeout=12.0)
        request = Mock(spec=requests.PreparedRequest)
        adapter.send(request)
        assert mock_super_send.call_args.kwargs["timeout"] == 12.0

    @patch("requests.adapters.HTTPAdapter.send")
    def test_send_keeps_explicit_timeout(self, mock_super_send):
        adapter = http_retry.TimeoutHTTPAdapter(timeout=12.0)
        request = Mock(spec=requests.PreparedRequest)
        adapter.send(request, timeout=3.0)
        assert mock_super_send.call_args.kwargs["timeout"] == 3.0


class TestCreateSession:
    """Test cases for create_session function."""

    def test_adapters_mounted(self):
        session = http_retry.create_session(timeout=5.0)
        for prefix in ("http://", "https://"):
            adapter = session.get_adapter(f"{prefix}example.com")
            assert isinstance(adapter, http_retry.TimeoutHTTPAdapter)
            assert adapter.timeout == 5.0
            # retries are left to the resolver
            assert adapter.max_retries.total == 0

    def test_user_agent(self):
        session = http_retry.create_session(user_agent="ghlatest/1.0")
        assert session.headers["User-Agent"] == "ghlatest/1.0"


class TestBackoffDelay:
    """Test cases for backoff_delay function."""

    @staticmethod
    def no_jitter(low: float, high: float) -> float:
        return 0.0

    @pytest.mark.parametrize(
        "attempt,expected",
        [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (10, 60.0)],
    )
    def test_exponential(self, attempt, expected):
        delay = http_retry.backoff_delay(attempt, jitter=self.no_jitter)
        assert delay == expected

    def test_jitter_added(self):
        delay = http_retry.backoff_delay(
            0, backoff_factor=2.0, jitter=lambda low, high: 0.5
        )
        assert delay == 2.5

    def test_jitter_range(self):
        for attempt in range(4):
            delay = http_retry.backoff_delay(attempt)
            assert 2**attempt <= delay <= 2**attempt + 1

    def test_retry_after_wins_when_longer(self):
        delay = http_retry.backoff_delay(
            0, retry_after=120.0, max_backoff=60.0, jitter=self.no_jitter
        )
        assert delay == 120.0

    def test_retry_after_shorter_than_backoff(self):
        delay = http_retry.backoff_delay(3, retry_after=1.0, jitter=self.no_jitter)
        assert delay == 8.0


class TestParseRetryAfter:
    """Test cases for parse_retry_after function."""

    def test_retry_after_seconds(self):
        assert http_retry.parse_retry_after({"Retry-After": "30"}) == 30.0

    def test_retry_after_wins_over_reset(self):
        headers = {"Retry-After": "5", "X-RateLimit-Reset": "2000"}
        assert http_retry.parse_retry_after(headers, clock=lambda: 1000.0) == 5.0

    def test_rate_limit_reset(self):
        headers = {"X-RateLimit-Reset": "1060"}
        assert http_retry.parse_retry_after(headers, clock=lambda: 1000.0) == 60.0

    def test_reset_in_the_past(self):
        headers = {"X-RateLimit-Reset": "900"}
        assert http_retry.parse_retry_after(headers, clock=lambda: 1000.0) == 0.0

    def test_malformed_headers(self):
        headers = {"Retry-After": "soon", "X-RateLimit-Reset": "later"}
        assert http_retry.parse_retry_after(headers) is None

    def test_no_headers(self):
        assert http_retry.parse_retry_after({}) is None
