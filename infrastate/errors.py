"""
Infrastate errors.

Store errors describe what the remote object store reported. Permanent errors
are never retried by the retry loop.
"""

from typing import List, Optional, Tuple


class InfrastateError(Exception):
    """Base exception for all Infrastate errors."""
    pass


class ConfigurationError(InfrastateError):
    """Errors in configuration."""
    pass


# =============================================================================
# Remote store errors
# =============================================================================

class StoreError(InfrastateError):
    """A remote store call failed."""
    pass


class NotFoundError(StoreError):
    """The target record does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f'{kind} "{namespace}/{name}" not found')


class AlreadyExistsError(StoreError):
    """The target record already exists."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f'{kind} "{namespace}/{name}" already exists')


class TransientStoreError(StoreError):
    """Any other store failure: network, throttling, server errors."""
    pass


# =============================================================================
# Permanent errors
# =============================================================================

class PermanentError(InfrastateError):
    """Errors that retrying cannot fix."""
    pass


class MissingIdentityError(PermanentError):
    """A listed record lacks a label needed to place it."""

    def __init__(self, record_name: str, label: str, what: str):
        self.record_name = record_name
        self.label = label
        super().__init__(f"can't determine {what} for {record_name!r} secret (label {label!r} is empty)")


class InvalidRecordNameError(PermanentError):
    """A record name derived from user input is not a valid object name."""
    pass


class SettingsMismatchError(PermanentError):
    """Node records of one group carry different group settings."""

    def __init__(self, node_group: str, node_name: str):
        self.node_group = node_group
        self.node_name = node_name
        super().__init__(
            f"node {node_name!r} carries settings that differ from other nodes of group {node_group!r}"
        )


class OperationCancelledError(PermanentError):
    """The caller cancelled an operation before it completed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name}: cancelled")


# =============================================================================
# Outcome errors
# =============================================================================

class NoStateError(InfrastateError):
    """A save was given an empty or absent state blob."""

    def __init__(self, message: str = "Terraform state is not found in outputs."):
        super().__init__(message)


class ExhaustedRetriesError(InfrastateError):
    """All attempts of a retried task failed."""

    def __init__(self, name: str, attempts: int, last_error: Optional[BaseException]):
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{name}: failed after {attempts} attempts: {last_error}")


class AggregateError(InfrastateError):
    """Several independent writes failed."""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = list(failures)
        lines = [f"  * {name}: {err}" for name, err in self.failures]
        super().__init__(f"{len(self.failures)} error(s) occurred:\n" + "\n".join(lines))

    @property
    def failed_names(self) -> List[str]:
        return [name for name, _ in self.failures]

    @property
    def errors(self) -> List[BaseException]:
        return [err for _, err in self.failures]
