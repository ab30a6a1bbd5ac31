"""
Local record stores.

InMemoryRecordStore keeps records in a dict. FileRecordStore also persists
them with joblib on every mutation, so state survives process restarts
on machines without a control plane.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import joblib

from ..errors import AlreadyExistsError, NotFoundError, TransientStoreError
from ..models import Record, RecordKind, RecordPatch
from .base import RecordStore, matches_selector

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """
    Thread-safe in-memory record store.

    Records are copied on the way in and out; callers never share
    instances with the store.
    """

    def __init__(self, records: Optional[List[Record]] = None):
        self._records: Dict[Tuple[str, str, str], Record] = {}
        self._lock = threading.RLock()
        for record in records or []:
            self._records[record.key] = record.model_copy(deep=True)

    def get(self, kind: RecordKind, namespace: str, name: str) -> Record:
        with self._lock:
            record = self._records.get((kind.value, namespace, name))
            if record is None:
                raise NotFoundError(kind.value, namespace, name)
            return record.model_copy(deep=True)

    def list(self, kind: RecordKind, namespace: str, label_selector: str = "") -> List[Record]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for key, record in sorted(self._records.items())
                if key[0] == kind.value and key[1] == namespace and matches_selector(record.labels, label_selector)
            ]

    def create(self, record: Record) -> Record:
        with self._lock:
            if record.key in self._records:
                raise AlreadyExistsError(record.kind.value, record.namespace, record.name)
            records = dict(self._records)
            records[record.key] = record.model_copy(deep=True)
            self._swap(records)
            logger.debug(f"Created {record.kind.value} {record.namespace}/{record.name}")
            return record.model_copy(deep=True)

    def update(self, record: Record) -> Record:
        with self._lock:
            if record.key not in self._records:
                raise NotFoundError(record.kind.value, record.namespace, record.name)
            records = dict(self._records)
            records[record.key] = record.model_copy(deep=True)
            self._swap(records)
            logger.debug(f"Updated {record.kind.value} {record.namespace}/{record.name}")
            return record.model_copy(deep=True)

    def merge_patch(self, kind: RecordKind, namespace: str, name: str, patch: RecordPatch) -> Record:
        with self._lock:
            key = (kind.value, namespace, name)
            current = self._records.get(key)
            if current is None:
                raise NotFoundError(kind.value, namespace, name)
            patched = patch.apply_to(current)
            records = dict(self._records)
            records[key] = patched
            self._swap(records)
            logger.debug(f"Patched {kind.value} {namespace}/{name}")
            return patched.model_copy(deep=True)

    def delete(self, kind: RecordKind, namespace: str, name: str) -> None:
        with self._lock:
            key = (kind.value, namespace, name)
            if key not in self._records:
                raise NotFoundError(kind.value, namespace, name)
            records = dict(self._records)
            del records[key]
            self._swap(records)
            logger.debug(f"Deleted {kind.value} {namespace}/{name}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _swap(self, records: Dict[Tuple[str, str, str], Record]) -> None:
        # the new map becomes current only once it is committed
        self._commit(records)
        self._records = records

    def _commit(self, records: Dict[Tuple[str, str, str], Record]) -> None:
        """Hook called with the new record map before it replaces the current one, under the lock."""


class FileRecordStore(InMemoryRecordStore):
    """Record store persisted to a local joblib file."""

    def __init__(self, store_file: Path):
        """
        Initialize FileRecordStore.

        Args:
            store_file: Path to the records file; created on first write
        """
        super().__init__()
        self.store_file = Path(store_file)
        self._load()
        logger.info(f"FileRecordStore initialized with store file: {self.store_file}")

    def _load(self) -> None:
        if not self.store_file.exists():
            logger.info("Store file does not exist, starting with no records")
            return

        try:
            data = joblib.load(self.store_file)
        except Exception as e:
            raise TransientStoreError(f"Could not load store file {self.store_file}: {e}") from e

        for raw in data.get("records", []):
            record = Record.model_validate(raw)
            self._records[record.key] = record
        logger.info(f"Loaded {len(self._records)} records from {self.store_file}")

    def _commit(self, records: Dict[Tuple[str, str, str], Record]) -> None:
        try:
            self.store_file.parent.mkdir(parents=True, exist_ok=True)
            data = {"records": [record.model_dump() for record in records.values()]}

            # Write to temporary file first, then rename (atomic operation)
            temp_file = self.store_file.with_suffix(".tmp")
            joblib.dump(data, temp_file)
            temp_file.replace(self.store_file)
        except Exception as e:
            logger.error(f"Failed to save store file: {e}")
            raise TransientStoreError(f"Could not save store file {self.store_file}: {e}") from e
