"""
Final, authoritative state saves.

Unlike checkpoints, these run verbosely and propagate failures: the caller
must not carry on believing infrastructure state was recorded when it was not.
"""

import logging
import threading
from typing import Optional

from .aggregate import ErrorAggregator
from .errors import NoStateError, NotFoundError
from .manifests import (
    MASTER_NODE_GROUP,
    PROVIDER_CLUSTER_CONFIGURATION_NAME,
    ClusterStateRecord,
    MasterDevicePathRecord,
    NodeStateRecord,
    cloud_discovery_patch,
)
from .models import ProvisioningOutputs, Record, RecordKind, RetryPolicy
from .retry import RetryLoop
from .settings import get_settings
from .store.base import RecordStore
from .upsert import UpsertProtocol, UpsertTask

logger = logging.getLogger(__name__)


def _policy(policy: Optional[RetryPolicy]) -> RetryPolicy:
    return policy or get_settings().final_policy


def _namespace(namespace: Optional[str]) -> str:
    return namespace or get_settings().namespace


def _node_record_task(store: RecordStore, shape: NodeStateRecord, namespace: str) -> UpsertTask:
    return UpsertTask.for_record(
        store,
        f'Secret "{shape.record_name}"',
        shape.to_record(namespace),
    )


def create_node_state(
    store: RecordStore,
    node_name: str,
    node_group: str,
    settings: Optional[bytes],
    namespace: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Create the record of a node that has no state yet, carrying group settings only.

    Raises:
        ExhaustedRetriesError: The record could not be written
        InvalidRecordNameError: node_name cannot be used in a record name
    """
    shape = NodeStateRecord(node_name=node_name, node_group=node_group, settings=settings)
    task = _node_record_task(store, shape, _namespace(namespace))
    RetryLoop.from_policy(
        f"Create Terraform state for Node {node_name!r}", _policy(policy), cancel=cancel
    ).run(task.run)


def save_node_state(
    store: RecordStore,
    node_name: str,
    node_group: str,
    state: bytes,
    settings: Optional[bytes],
    namespace: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Save the final state of a node.

    Raises:
        NoStateError: state is empty
        InvalidRecordNameError: Empty node group or invalid node name
        ExhaustedRetriesError: The record could not be written
    """
    if not state:
        raise NoStateError()

    shape = NodeStateRecord(node_name=node_name, node_group=node_group, state=state, settings=settings)
    task = _node_record_task(store, shape, _namespace(namespace))
    RetryLoop.from_policy(
        f"Save Terraform state for Node {node_name!r}", _policy(policy), cancel=cancel
    ).run(task.run)


def save_master_node_state(
    store: RecordStore,
    node_name: str,
    state: bytes,
    device_path: bytes,
    namespace: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Save the final state of a master node and its kubernetes data device path.

    The two records are written independently: each has its own retry loop
    and a failure of one does not stop the other.

    Raises:
        NoStateError: state is empty
        AggregateError: One or both records could not be written; names only the failed ones
    """
    if not state:
        raise NoStateError()

    ns = _namespace(namespace)
    node_shape = NodeStateRecord(node_name=node_name, node_group=MASTER_NODE_GROUP, state=state)
    device_shape = MasterDevicePathRecord(node_name=node_name, device_path=device_path)

    tasks = [
        _node_record_task(store, node_shape, ns),
        # the device path record is shared by all masters, never replace it whole
        UpsertTask.for_record(
            store,
            f'Secret "{device_shape.to_record(ns).name}"',
            device_shape.to_record(ns),
            update_with_patch=True,
        ),
    ]

    logger.info(f"Save Terraform state for master Node {node_name}")
    errors = ErrorAggregator()
    for task in tasks:
        with errors.capture(task.name):
            RetryLoop.from_policy(task.name, _policy(policy), cancel=cancel).run(task.run)
    errors.raise_if_errors()


def save_cluster_state(
    store: RecordStore,
    outputs: Optional[ProvisioningOutputs],
    namespace: Optional[str] = None,
    system_namespace: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Save the final base infrastructure state, then publish cloud discovery data
    to the provider cluster configuration when the outputs carry any.

    Raises:
        NoStateError: outputs carry no state
        ExhaustedRetriesError: A record could not be written
    """
    if outputs is None or not outputs.has_state:
        raise NoStateError()

    ns = _namespace(namespace)
    system_ns = system_namespace or get_settings().system_namespace
    shape = ClusterStateRecord(state=outputs.state, cloud_discovery=outputs.cloud_discovery or None)

    task = UpsertTask.for_record(store, f'Secret "{shape.to_record(ns).name}"', shape.to_record(ns))
    RetryLoop.from_policy("Save Cluster Terraform state", _policy(policy), cancel=cancel).run(task.run)

    if not outputs.cloud_discovery:
        logger.info("No cloud discovery data in outputs, provider cluster configuration left as is")
        return

    provider_configuration = Record(
        kind=RecordKind.SECRET, namespace=system_ns, name=PROVIDER_CLUSTER_CONFIGURATION_NAME
    )
    discovery_task = UpsertTask.for_record(
        store,
        f'Secret "{PROVIDER_CLUSTER_CONFIGURATION_NAME}"',
        provider_configuration,
        protocol=UpsertProtocol.PATCH_ONLY,
        patch=lambda: cloud_discovery_patch(outputs.cloud_discovery),
    )
    RetryLoop.from_policy("Update cloud discovery data", _policy(policy), cancel=cancel).run(discovery_task.run)


def delete_state(
    store: RecordStore,
    record_name: str,
    namespace: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> bool:
    """
    Delete a terraform state record.

    Returns:
        True if the record was deleted, False if it was already gone

    Raises:
        ExhaustedRetriesError: The record could not be deleted
    """
    ns = _namespace(namespace)

    def delete() -> bool:
        try:
            store.delete(RecordKind.SECRET, ns, record_name)
        except NotFoundError:
            logger.info(f"Terraform state {record_name} is already deleted")
            return False
        return True

    return RetryLoop.from_policy(f"Delete Terraform state {record_name}", _policy(policy), cancel=cancel).run(delete)
