"""
Infrastate - durable provisioning state for cluster infrastructure.

Records the state of an external provisioning engine in the cluster's control
plane so infrastructure lifecycle operations survive crashes and restarts:

- State sinks checkpoint state while provisioning runs
- Final persistence functions write the authoritative state once it completes
- The fleet reader rebuilds node group and cluster state from the store

Every write is an idempotent upsert under a bounded, fixed-delay retry loop.
"""

from .errors import (
    AggregateError,
    AlreadyExistsError,
    ExhaustedRetriesError,
    InfrastateError,
    MissingIdentityError,
    NoStateError,
    NotFoundError,
    TransientStoreError,
)
from .models import NodeGroupState, ProvisioningOutputs, Record, RecordKind, RecordPatch, RetryPolicy
from .persistence import (
    create_node_state,
    delete_state,
    save_cluster_state,
    save_master_node_state,
    save_node_state,
)
from .reader import FleetStateReader
from .retry import RetryLoop
from .settings import InfrastateSettings, get_settings, reload_settings
from .sinks import ClusterStateSaver, NodeStateSaver, StateSink
from .upsert import UpsertProtocol, UpsertTask

__version__ = "0.1.0"
__all__ = [
    "AggregateError",
    "AlreadyExistsError",
    "ClusterStateSaver",
    "ExhaustedRetriesError",
    "FleetStateReader",
    "InfrastateError",
    "InfrastateSettings",
    "MissingIdentityError",
    "NoStateError",
    "NodeGroupState",
    "NodeStateSaver",
    "NotFoundError",
    "ProvisioningOutputs",
    "Record",
    "RecordKind",
    "RecordPatch",
    "RetryLoop",
    "RetryPolicy",
    "StateSink",
    "TransientStoreError",
    "UpsertProtocol",
    "UpsertTask",
    "create_node_state",
    "delete_state",
    "get_settings",
    "reload_settings",
    "save_cluster_state",
    "save_master_node_state",
    "save_node_state",
]
