"""
Pytest configuration and fixtures for Infrastate tests.
"""

import tempfile
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from infrastate.errors import TransientStoreError
from infrastate.models import Record, RecordKind, RecordPatch, RetryPolicy
from infrastate.settings import reload_settings
from infrastate.store import InMemoryRecordStore, RecordStore


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Zero retry delays so default policies never sleep in tests."""
    for name in ("CHECKPOINT_DELAY", "FINAL_DELAY", "READ_DELAY"):
        monkeypatch.setenv(f"INFRASTATE_{name}", "0")
    monkeypatch.delenv("INFRASTATE_STORE_BACKEND", raising=False)
    monkeypatch.delenv("INFRASTATE_STRICT_GROUP_SETTINGS", raising=False)
    yield reload_settings()
    reload_settings()


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def policy():
    """Small retry budget without delays."""
    return RetryPolicy(attempts=3, delay=0)


class CountingStore(RecordStore):
    """
    Wraps an in-memory store, counting calls and injecting failures.

    fail(method, times=n) makes the next n calls of a method raise;
    fail(method, name=..., times=None) makes every call for that record raise.
    """

    def __init__(self, inner: Optional[RecordStore] = None):
        self.inner = inner or InMemoryRecordStore()
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, Optional[str]], list] = {}

    def fail(self, method: str, name: Optional[str] = None, times: Optional[int] = 1, error: Exception = None):
        error = error or TransientStoreError(f"injected {method} failure")
        self._failures[(method, name)] = [error, times]

    def count(self, method: str, name: Optional[str] = None) -> int:
        counter = Counter(self.calls)
        if name is None:
            return sum(n for (m, _), n in counter.items() if m == method)
        return counter[(method, name)]

    def _call(self, method: str, name: str, fn, *args):
        self.calls.append((method, name))
        for key in ((method, name), (method, None)):
            entry = self._failures.get(key)
            if entry is None:
                continue
            error, remaining = entry
            if remaining is None:
                raise error
            if remaining > 0:
                entry[1] = remaining - 1
                raise error
        return fn(*args)

    def get(self, kind: RecordKind, namespace: str, name: str) -> Record:
        return self._call("get", name, self.inner.get, kind, namespace, name)

    def list(self, kind: RecordKind, namespace: str, label_selector: str = "") -> List[Record]:
        return self._call("list", "", self.inner.list, kind, namespace, label_selector)

    def create(self, record: Record) -> Record:
        return self._call("create", record.name, self.inner.create, record)

    def update(self, record: Record) -> Record:
        return self._call("update", record.name, self.inner.update, record)

    def merge_patch(self, kind: RecordKind, namespace: str, name: str, patch: RecordPatch) -> Record:
        return self._call("merge_patch", name, self.inner.merge_patch, kind, namespace, name, patch)

    def delete(self, kind: RecordKind, namespace: str, name: str) -> None:
        return self._call("delete", name, self.inner.delete, kind, namespace, name)


@pytest.fixture
def store():
    """Counting store over an empty in-memory store."""
    return CountingStore()
