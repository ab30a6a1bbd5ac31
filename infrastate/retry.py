"""
Bounded retry loop for remote store operations.

Attempts are spaced by a fixed delay: attempts map to control plane
availability, and operators need a predictable total wait (attempts x delay).
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from .errors import ExhaustedRetriesError, OperationCancelledError, PermanentError
from .models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, PermanentError)


class RetryLoop:
    """
    Runs an operation up to `attempts` times with `delay` seconds between attempts.

    Usage:
        RetryLoop("Save Cluster Terraform state", 45, 10).run(task.run)

        # same semantics, no per-attempt logging
        RetryLoop.new_silent("Save intermediate state", 45, 10).run(task.run)
    """

    def __init__(
        self,
        name: str,
        attempts: int,
        delay: float,
        silent: bool = False,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the loop.

        Args:
            name: Human readable task name used in logs and errors
            attempts: Maximum number of attempts, at least 1
            delay: Seconds to wait between attempts
            silent: Suppress per-attempt progress logging
            cancel: Optional event; once set no further attempt is started
        """
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        if delay < 0:
            raise ValueError(f"delay must not be negative, got {delay}")
        self.name = name
        self.attempts = attempts
        self.delay = delay
        self.silent = silent
        self.cancel = cancel

    @classmethod
    def new_silent(
        cls, name: str, attempts: int, delay: float, cancel: Optional[threading.Event] = None
    ) -> "RetryLoop":
        return cls(name, attempts, delay, silent=True, cancel=cancel)

    @classmethod
    def from_policy(
        cls,
        name: str,
        policy: RetryPolicy,
        silent: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> "RetryLoop":
        return cls(name, policy.attempts, policy.delay, silent=silent, cancel=cancel)

    def run(self, operation: Callable[[], T]) -> T:
        """
        Run the operation until it succeeds or the attempts are spent.

        Returns:
            Whatever the first successful attempt returned

        Raises:
            ExhaustedRetriesError: All attempts failed; wraps the last error
            PermanentError: Raised by the operation, propagated without retrying
        """
        self._progress(f"{self.name}: starting")
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=False,
        )

        try:
            result = retrying(self._attempt, operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            self._progress(f"{self.name}: giving up after {self.attempts} attempts: {last_error}", logging.ERROR)
            raise ExhaustedRetriesError(self.name, self.attempts, last_error) from last_error

        self._progress(f"{self.name}: succeeded")
        return result

    def _attempt(self, operation: Callable[[], T]) -> T:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelledError(self.name)
        return operation()

    def _sleep(self, seconds: float) -> None:
        if self.cancel is None:
            time.sleep(seconds)
        elif self.cancel.wait(seconds):
            raise OperationCancelledError(self.name)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        err = retry_state.outcome.exception() if retry_state.outcome else None
        self._progress(
            f"{self.name} failed (attempt {retry_state.attempt_number}/{self.attempts}): {err}; "
            f"next attempt in {self.delay}s",
            logging.WARNING,
        )

    def _progress(self, message: str, level: int = logging.INFO) -> None:
        logger.log(logging.DEBUG if self.silent else level, message)
