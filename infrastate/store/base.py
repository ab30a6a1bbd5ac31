"""
Remote record store interface.

Stores surface two conditions the upsert protocols branch on: NotFoundError
and AlreadyExistsError. Every other failure is a TransientStoreError.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from ..models import Record, RecordKind, RecordPatch


class RecordStore(ABC):
    """A namespaced key-value object store (the control plane API)."""

    @abstractmethod
    def get(self, kind: RecordKind, namespace: str, name: str) -> Record:
        """Fetch one record. Raises NotFoundError."""

    @abstractmethod
    def list(self, kind: RecordKind, namespace: str, label_selector: str = "") -> List[Record]:
        """List records whose labels match the selector."""

    @abstractmethod
    def create(self, record: Record) -> Record:
        """Create a record. Raises AlreadyExistsError."""

    @abstractmethod
    def update(self, record: Record) -> Record:
        """Replace a whole record. Raises NotFoundError."""

    @abstractmethod
    def merge_patch(self, kind: RecordKind, namespace: str, name: str, patch: RecordPatch) -> Record:
        """Replace only the fields listed in the patch. Raises NotFoundError."""

    @abstractmethod
    def delete(self, kind: RecordKind, namespace: str, name: str) -> None:
        """Delete a record. Raises NotFoundError."""


def parse_label_selector(selector: str) -> List[Tuple[str, str, str]]:
    """
    Parse a label selector into (operator, key, value) terms.

    Supported terms, comma separated: ``key``, ``!key``, ``key=value``,
    ``key==value`` and ``key!=value``.
    """
    terms = []
    for raw in selector.split(","):
        term = raw.strip()
        if not term:
            continue
        if "!=" in term:
            key, value = term.split("!=", 1)
            terms.append(("!=", key.strip(), value.strip()))
        elif "==" in term:
            key, value = term.split("==", 1)
            terms.append(("=", key.strip(), value.strip()))
        elif "=" in term:
            key, value = term.split("=", 1)
            terms.append(("=", key.strip(), value.strip()))
        elif term.startswith("!"):
            terms.append(("!exists", term[1:].strip(), ""))
        else:
            terms.append(("exists", term, ""))
    return terms


def matches_selector(labels: Dict[str, str], selector: str) -> bool:
    for op, key, value in parse_label_selector(selector):
        if op == "exists" and key not in labels:
            return False
        if op == "!exists" and key in labels:
            return False
        if op == "=" and labels.get(key) != value:
            return False
        if op == "!=" and labels.get(key) == value:
            return False
    return True
