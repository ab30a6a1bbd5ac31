"""
Pydantic models shared by the Infrastate state engine.

- ProvisioningOutputs handed over by the provisioning engine
- NodeGroupState rebuilt by the fleet reader
- Record / RecordPatch, the unit of persistence in the remote store
- RetryPolicy budgets for retried store operations
"""

import base64
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordKind(str, Enum):
    """Kinds of records the engine reads and writes."""
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"


class ProvisioningOutputs(BaseModel):
    """Result of one provisioning run."""

    model_config = ConfigDict(frozen=True)

    state: bytes = b""
    cloud_discovery: bytes = b""

    @property
    def has_state(self) -> bool:
        return len(self.state) > 0


class NodeGroupState(BaseModel):
    """Per-node state of one node group, reconstructed from node records."""

    state: Dict[str, bytes] = Field(default_factory=dict)
    settings: Optional[bytes] = None


class RetryPolicy(BaseModel):
    """Attempt budget for a retried operation."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(ge=1)
    delay: float = Field(default=0.0, ge=0.0)

    @property
    def total_wait(self) -> float:
        """Worst-case seconds spent sleeping between attempts."""
        return self.delay * (self.attempts - 1)


class Record(BaseModel):
    """A namespaced, named, labeled key-value object in the remote store."""

    kind: RecordKind = RecordKind.SECRET
    namespace: str
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)
    data: Dict[str, bytes] = Field(default_factory=dict)

    @field_validator("name", "namespace")
    @classmethod
    def validate_not_empty(cls, v):
        if not v:
            raise ValueError("record name and namespace must be non-empty")
        return v

    @property
    def key(self) -> tuple:
        return (self.kind.value, self.namespace, self.name)

    def to_manifest(self) -> Dict[str, Any]:
        """Render as a Kubernetes object document."""
        manifest: Dict[str, Any] = {
            "apiVersion": "v1",
            "kind": self.kind.value,
            "metadata": {"name": self.name, "namespace": self.namespace},
        }
        if self.labels:
            manifest["metadata"]["labels"] = dict(self.labels)
        if self.kind == RecordKind.SECRET:
            manifest["type"] = "Opaque"
            manifest["data"] = {k: base64.b64encode(v).decode("ascii") for k, v in self.data.items()}
        else:
            manifest["data"] = {k: v.decode("utf-8") for k, v in self.data.items()}
        return manifest

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "Record":
        """Parse a Kubernetes object document."""
        kind = RecordKind(manifest.get("kind", RecordKind.SECRET.value))
        metadata = manifest.get("metadata") or {}
        raw = manifest.get("data") or {}
        if kind == RecordKind.SECRET:
            data = {k: base64.b64decode(v) for k, v in raw.items()}
        else:
            data = {k: v.encode("utf-8") for k, v in raw.items()}
        return cls(
            kind=kind,
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            labels=metadata.get("labels") or {},
            data=data,
        )


class RecordPatch(BaseModel):
    """
    Merge patch for a record.

    Listed keys are replaced, keys mapped to None are removed, every other
    key of the record is left untouched.
    """

    labels: Dict[str, Optional[str]] = Field(default_factory=dict)
    data: Dict[str, Optional[bytes]] = Field(default_factory=dict)

    def apply_to(self, record: Record) -> Record:
        patched = record.model_copy(deep=True)
        for key, value in self.labels.items():
            if value is None:
                patched.labels.pop(key, None)
            else:
                patched.labels[key] = value
        for key, value in self.data.items():
            if value is None:
                patched.data.pop(key, None)
            else:
                patched.data[key] = value
        return patched

    def to_merge_patch(self, kind: RecordKind) -> Dict[str, Any]:
        """Render as a JSON merge patch document."""
        doc: Dict[str, Any] = {}
        if self.labels:
            doc["metadata"] = {"labels": dict(self.labels)}
        if self.data:
            if kind == RecordKind.SECRET:
                encode = lambda v: base64.b64encode(v).decode("ascii")
            else:
                encode = lambda v: v.decode("utf-8")
            doc["data"] = {k: (None if v is None else encode(v)) for k, v in self.data.items()}
        return doc
