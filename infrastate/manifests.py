"""
Record shapes persisted by the state engine.

Names, labels and data keys below are a persisted contract: records written by
one version must be readable by the next.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel

from .errors import InvalidRecordNameError
from .models import Record, RecordKind, RecordPatch

# Labels
LABEL_TERRAFORM_STATE = "node.deckhouse.io/terraform-state"
LABEL_NODE_NAME = "node.deckhouse.io/node-name"
LABEL_NODE_GROUP = "node.deckhouse.io/node-group"

# Data keys
NODE_STATE_KEY = "node-tf-state.json"
NODE_GROUP_SETTINGS_KEY = "node-group-settings.json"
CLUSTER_STATE_KEY = "cluster-tf-state.json"
CLOUD_DISCOVERY_KEY = "cloud-provider-discovery-data.json"
CLUSTER_UUID_KEY = "cluster-uuid"

# Record names
NODE_STATE_NAME_PREFIX = "d8-node-terraform-state-"
CLUSTER_STATE_NAME = "d8-cluster-terraform-state"
MASTER_DEVICE_PATH_NAME = "d8-masters-kubernetes-data-device-path"
CLUSTER_UUID_NAME = "d8-cluster-uuid"
PROVIDER_CLUSTER_CONFIGURATION_NAME = "d8-provider-cluster-configuration"

MASTER_NODE_GROUP = "master"

_DNS1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_MAX_NAME_LENGTH = 253


def node_state_record_name(node_name: str) -> str:
    """
    Name of the record holding a node's state.

    Raises:
        InvalidRecordNameError: If the result is not a valid object name
    """
    name = f"{NODE_STATE_NAME_PREFIX}{node_name}"
    if not node_name or len(name) > _MAX_NAME_LENGTH or not _DNS1123_SUBDOMAIN.match(name):
        raise InvalidRecordNameError(f"invalid name {name!r} for node {node_name!r} state record")
    return name


def node_identity(node_name: str, node_group: str) -> str:
    """
    Validate a node's identity labels and return its record name.

    The fleet reader cannot place a record without both labels, so one bad
    write would block every later read.

    Raises:
        InvalidRecordNameError: Empty node group or invalid node name
    """
    if not node_group:
        raise InvalidRecordNameError(f"empty node group for node {node_name!r} state record")
    return node_state_record_name(node_name)


class NodeStateRecord(BaseModel):
    """State of one node. Master nodes carry no group settings."""
    shape: Literal["node-state"] = "node-state"
    node_name: str
    node_group: str
    state: Optional[bytes] = None
    settings: Optional[bytes] = None

    @property
    def record_name(self) -> str:
        return node_identity(self.node_name, self.node_group)

    def to_record(self, namespace: str) -> Record:
        data = {}
        if self.state is not None:
            data[NODE_STATE_KEY] = self.state
        if self.settings is not None:
            data[NODE_GROUP_SETTINGS_KEY] = self.settings
        return Record(
            kind=RecordKind.SECRET,
            namespace=namespace,
            name=self.record_name,
            labels={
                LABEL_TERRAFORM_STATE: "",
                LABEL_NODE_NAME: self.node_name,
                LABEL_NODE_GROUP: self.node_group,
            },
            data=data,
        )

    def state_patch(self) -> RecordPatch:
        """Patch replacing only the node's state key."""
        return RecordPatch(data={NODE_STATE_KEY: self.state})


class ClusterStateRecord(BaseModel):
    """Cluster-wide base infrastructure state."""
    shape: Literal["cluster-state"] = "cluster-state"
    state: bytes
    cloud_discovery: Optional[bytes] = None

    def to_record(self, namespace: str) -> Record:
        data = {CLUSTER_STATE_KEY: self.state}
        if self.cloud_discovery:
            data[CLOUD_DISCOVERY_KEY] = self.cloud_discovery
        return Record(
            kind=RecordKind.SECRET,
            namespace=namespace,
            name=CLUSTER_STATE_NAME,
            labels={"name": CLUSTER_STATE_NAME},
            data=data,
        )

    def state_patch(self) -> RecordPatch:
        """Patch replacing only the cluster state key."""
        return RecordPatch(data={CLUSTER_STATE_KEY: self.state})


class MasterDevicePathRecord(BaseModel):
    """Kubernetes data device path of one master, stored under the node's name in a shared record."""
    shape: Literal["master-device-path"] = "master-device-path"
    node_name: str
    device_path: bytes

    def to_record(self, namespace: str) -> Record:
        return Record(
            kind=RecordKind.SECRET,
            namespace=namespace,
            name=MASTER_DEVICE_PATH_NAME,
            data={self.node_name: self.device_path},
        )

    def device_path_patch(self) -> RecordPatch:
        return RecordPatch(data={self.node_name: self.device_path})


class ClusterUUIDRecord(BaseModel):
    shape: Literal["cluster-uuid"] = "cluster-uuid"
    uuid: str

    def to_record(self, namespace: str) -> Record:
        return Record(
            kind=RecordKind.CONFIG_MAP,
            namespace=namespace,
            name=CLUSTER_UUID_NAME,
            data={CLUSTER_UUID_KEY: self.uuid.encode("utf-8")},
        )

    @classmethod
    def from_record(cls, record: Record) -> "ClusterUUIDRecord":
        return cls(uuid=record.data.get(CLUSTER_UUID_KEY, b"").decode("utf-8"))


def cloud_discovery_patch(cloud_discovery: bytes) -> RecordPatch:
    """Patch for the provider cluster configuration record."""
    return RecordPatch(data={CLOUD_DISCOVERY_KEY: cloud_discovery})
