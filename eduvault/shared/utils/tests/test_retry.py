"""Tests for bounded and retried store calls."""
import threading

import pytest

from eduvault.shared.database import RepositoryError, StoreUnavailableError
from eduvault.shared.utils import backoff_delay, call_with_timeout, retry_call


class TestBackoffDelay:
    """Tests for exponential backoff with jitter."""

    def test_grows_exponentially_without_jitter(self):
        assert backoff_delay(1, base=0.1, cap=10, jitter=0) == pytest.approx(0.1)
        assert backoff_delay(2, base=0.1, cap=10, jitter=0) == pytest.approx(0.2)
        assert backoff_delay(4, base=0.1, cap=10, jitter=0) == pytest.approx(0.8)

    def test_capped(self):
        assert backoff_delay(20, base=0.1, cap=1.0, jitter=0) == pytest.approx(1.0)

    def test_jitter_stays_in_band(self):
        for _ in range(50):
            delay = backoff_delay(1, base=1.0, cap=10, jitter=0.25)
            assert 0.75 <= delay <= 1.25


class TestCallWithTimeout:
    """Tests for call_with_timeout."""

    def test_returns_result(self):
        assert call_with_timeout(lambda x: x * 2, 21, timeout=1.0) == 42

    def test_inline_without_timeout(self):
        assert call_with_timeout(lambda: threading.current_thread(), timeout=None) is threading.current_thread()

    def test_timeout_raises_store_unavailable(self):
        release = threading.Event()
        try:
            with pytest.raises(StoreUnavailableError):
                call_with_timeout(release.wait, 5, timeout=0.05, operation="slow_store")
        finally:
            release.set()

    def test_propagates_call_errors(self):
        def boom():
            raise RepositoryError("bad row")

        with pytest.raises(RepositoryError):
            call_with_timeout(boom, timeout=1.0)


class TestRetryCall:
    """Tests for retry_call."""

    def test_succeeds_after_transient_failures(self):
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StoreUnavailableError("connection reset")
            return "ok"

        result = retry_call(flaky, max_attempts=3, sleep=sleeps.append)

        assert result == "ok"
        assert len(attempts) == 3
        assert len(sleeps) == 2

    def test_raises_after_exhausting_attempts(self):
        calls = []

        def down():
            calls.append(1)
            raise StoreUnavailableError("down")

        with pytest.raises(StoreUnavailableError):
            retry_call(down, max_attempts=2, sleep=lambda _: None)

        assert len(calls) == 2

    def test_non_transient_error_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise RepositoryError("constraint")

        with pytest.raises(RepositoryError):
            retry_call(broken, max_attempts=5, sleep=lambda _: None)

        assert len(calls) == 1

    def test_exhaustion_is_logged(self, caplog):
        def down():
            raise StoreUnavailableError("down")

        with caplog.at_level("WARNING"):
            with pytest.raises(StoreUnavailableError):
                retry_call(down, max_attempts=2, operation="archive_put", sleep=lambda _: None)

        assert "STORE_CALL_RETRY" in caplog.text
        assert "STORE_RETRIES_EXHAUSTED" in caplog.text
