"""
Collects failures of independent writes that belong to one logical save.

Every write is attempted even when an earlier one failed: one persisted record
is better than none, and the caller learns exactly which writes failed.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from .errors import AggregateError, InfrastateError, OperationCancelledError

logger = logging.getLogger(__name__)


class ErrorAggregator:
    """
    Accumulates (name, error) pairs.

    Usage:
        errors = ErrorAggregator()
        for task in tasks:
            with errors.capture(task.name):
                RetryLoop(task.name, 45, 10).run(task.run)
        errors.raise_if_errors()
    """

    def __init__(self):
        self._failures: List[Tuple[str, BaseException]] = []

    def add(self, name: str, error: BaseException) -> None:
        logger.debug(f"Collected failure of {name}: {error}")
        self._failures.append((name, error))

    @contextmanager
    def capture(self, name: str) -> Iterator[None]:
        """Record an InfrastateError raised inside the block and carry on. Cancellation propagates."""
        try:
            yield
        except OperationCancelledError:
            raise
        except InfrastateError as e:
            self.add(name, e)

    @property
    def failures(self) -> List[Tuple[str, BaseException]]:
        return list(self._failures)

    def __len__(self) -> int:
        return len(self._failures)

    def error(self) -> Optional[AggregateError]:
        if not self._failures:
            return None
        return AggregateError(self._failures)

    def raise_if_errors(self) -> None:
        err = self.error()
        if err is not None:
            raise err
