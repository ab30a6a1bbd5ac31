"""
Unit tests for the bounded retry loop.
"""

import logging
import threading

import pytest

from infrastate.errors import (
    ExhaustedRetriesError,
    MissingIdentityError,
    OperationCancelledError,
    TransientStoreError,
)
from infrastate.models import RetryPolicy
from infrastate.retry import RetryLoop


class Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error: Exception = None):
        self.failures = failures
        self.error = error or TransientStoreError("connection refused")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class TestRetryLoop:
    """Test RetryLoop attempt accounting."""

    def test_succeeds_first_time(self):
        """A successful operation runs once and its result is returned."""
        op = Flaky(0)
        assert RetryLoop("noop", 5, 0).run(op) == "done"
        assert op.calls == 1

    @pytest.mark.parametrize("failures", [1, 2, 4])
    def test_succeeds_after_k_failures(self, failures):
        """k < attempts failures lead to exactly k+1 invocations."""
        op = Flaky(failures)
        assert RetryLoop("flaky", 5, 0).run(op) == "done"
        assert op.calls == failures + 1

    def test_exhausted_after_max_attempts(self):
        """An always-failing operation runs exactly `attempts` times."""
        op = Flaky(100)
        with pytest.raises(ExhaustedRetriesError) as exc_info:
            RetryLoop("Save Cluster Terraform state", 4, 0).run(op)

        assert op.calls == 4
        err = exc_info.value
        assert err.name == "Save Cluster Terraform state"
        assert err.attempts == 4
        assert "Save Cluster Terraform state" in str(err)
        assert isinstance(err.last_error, TransientStoreError)
        assert err.__cause__ is err.last_error

    def test_permanent_error_not_retried(self):
        """Permanent errors propagate on the first attempt."""
        op = Flaky(100, MissingIdentityError("secret-a", "node-name", "Node name"))
        with pytest.raises(MissingIdentityError):
            RetryLoop("read", 5, 0).run(op)
        assert op.calls == 1

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryLoop("bad", 0, 0)

    def test_fixed_delay_between_attempts(self, monkeypatch):
        """Waits are constant, one fewer than attempts."""
        sleeps = []
        monkeypatch.setattr("infrastate.retry.time.sleep", sleeps.append)

        with pytest.raises(ExhaustedRetriesError):
            RetryLoop("slow", 4, 2.5).run(Flaky(100))
        assert sleeps == [2.5, 2.5, 2.5]

    def test_from_policy(self):
        op = Flaky(100)
        with pytest.raises(ExhaustedRetriesError):
            RetryLoop.from_policy("policy", RetryPolicy(attempts=2, delay=0)).run(op)
        assert op.calls == 2


class TestRetryLoopLogging:
    """Test verbose and silent progress logging."""

    def test_verbose_logs_each_failed_attempt(self, caplog):
        caplog.set_level(logging.DEBUG, logger="infrastate.retry")
        RetryLoop("verbose task", 3, 0).run(Flaky(2))

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
        assert "attempt 1/3" in warnings[0].getMessage()

    def test_silent_suppresses_progress(self, caplog):
        caplog.set_level(logging.INFO, logger="infrastate.retry")
        op = Flaky(2)
        RetryLoop.new_silent("silent task", 3, 0).run(op)

        assert op.calls == 3
        assert [r for r in caplog.records if r.name == "infrastate.retry"] == []


class TestRetryLoopCancellation:
    """Test cancellation through the cancel event."""

    def test_cancelled_before_first_attempt(self):
        cancel = threading.Event()
        cancel.set()
        op = Flaky(0)
        with pytest.raises(OperationCancelledError) as exc_info:
            RetryLoop("cancelled", 3, 0, cancel=cancel).run(op)
        assert op.calls == 0
        assert "cancelled" in str(exc_info.value)

    def test_cancel_interrupts_wait(self):
        """Setting the event during a failed attempt stops the loop at the next wait."""
        cancel = threading.Event()

        def op():
            cancel.set()
            raise TransientStoreError("unavailable")

        with pytest.raises(OperationCancelledError):
            RetryLoop("long wait", 45, 10, cancel=cancel).run(op)

    def test_unset_event_keeps_retrying(self):
        cancel = threading.Event()
        op = Flaky(2)
        assert RetryLoop("with token", 3, 0, cancel=cancel).run(op) == "done"
        assert op.calls == 3
