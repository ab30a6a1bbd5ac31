"""
Fleet state reader.

Rebuilds in-memory state of all node groups and of the cluster from the
records in the remote store. Nothing is cached: every call reads the store.
"""

import logging
import threading
from typing import Dict, Optional

from .errors import MissingIdentityError, NotFoundError, SettingsMismatchError
from .manifests import (
    CLUSTER_STATE_KEY,
    CLUSTER_STATE_NAME,
    CLUSTER_UUID_NAME,
    LABEL_NODE_GROUP,
    LABEL_NODE_NAME,
    LABEL_TERRAFORM_STATE,
    NODE_GROUP_SETTINGS_KEY,
    NODE_STATE_KEY,
    ClusterUUIDRecord,
)
from .models import NodeGroupState, RecordKind, RetryPolicy
from .retry import RetryLoop
from .settings import get_settings
from .store.base import RecordStore

logger = logging.getLogger(__name__)


class FleetStateReader:
    """
    Reads node group, cluster and identity state from the store.

    Usage:
        reader = FleetStateReader(store)
        groups = reader.get_nodes_state()
        cluster_state = reader.get_cluster_state()
    """

    def __init__(
        self,
        store: RecordStore,
        namespace: Optional[str] = None,
        system_namespace: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        strict_group_settings: Optional[bool] = None,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize FleetStateReader.

        Args:
            store: Store to read from
            namespace: Namespace of the state records
            system_namespace: Namespace of the cluster UUID record
            policy: Retry budget for reads
            strict_group_settings: Raise SettingsMismatchError when nodes of one
                group disagree on settings instead of logging a warning
            cancel: Optional cancel event
        """
        settings = get_settings()
        self.store = store
        self.namespace = namespace or settings.namespace
        self.system_namespace = system_namespace or settings.system_namespace
        self.policy = policy or settings.read_policy
        self.strict_group_settings = (
            settings.strict_group_settings if strict_group_settings is None else strict_group_settings
        )
        self.cancel = cancel

    def get_nodes_state(self) -> Dict[str, NodeGroupState]:
        """
        Collect node states grouped by node group.

        Records are processed in name order; a group's settings are those of
        the last record processed.

        Raises:
            MissingIdentityError: A record has no node name or node group label
            SettingsMismatchError: Strict mode and a group disagrees on settings
            ExhaustedRetriesError: The store could not be listed
        """
        return RetryLoop.from_policy(
            "Get Nodes Terraform state from Kubernetes cluster", self.policy, cancel=self.cancel
        ).run(self._collect_nodes_state)

    def _collect_nodes_state(self) -> Dict[str, NodeGroupState]:
        # built from scratch on every attempt, a failed attempt leaks nothing
        extracted: Dict[str, NodeGroupState] = {}
        records = self.store.list(RecordKind.SECRET, self.namespace, LABEL_TERRAFORM_STATE)

        for record in sorted(records, key=lambda r: r.name):
            name = record.labels.get(LABEL_NODE_NAME, "")
            if not name:
                raise MissingIdentityError(record.name, LABEL_NODE_NAME, "Node name")

            node_group = record.labels.get(LABEL_NODE_GROUP, "")
            if not node_group:
                raise MissingIdentityError(record.name, LABEL_NODE_GROUP, "NodeGroup")

            group_state = extracted.setdefault(node_group, NodeGroupState())
            settings = record.data.get(NODE_GROUP_SETTINGS_KEY)
            if group_state.state and settings != group_state.settings:
                if self.strict_group_settings:
                    raise SettingsMismatchError(node_group, name)
                logger.warning(
                    f"nodeGroup={node_group} nodeName={name} carries settings different "
                    f"from other nodes of the group, using the last one"
                )
            group_state.settings = settings

            state = record.data.get(NODE_STATE_KEY, b"")
            group_state.state[name] = state
            logger.info(f"nodeGroup={node_group} nodeName={name} symbols={len(state)}")

        return extracted

    def get_cluster_state(self) -> bytes:
        """
        Fetch the cluster state.

        Returns:
            The state, or b"" when no cluster state record exists yet

        Raises:
            ExhaustedRetriesError: The store could not be read
        """
        def fetch() -> bytes:
            try:
                record = self.store.get(RecordKind.SECRET, self.namespace, CLUSTER_STATE_NAME)
            except NotFoundError:
                # no terraform-managed base infrastructure yet
                return b""
            return record.data.get(CLUSTER_STATE_KEY, b"")

        return RetryLoop.from_policy(
            "Get Cluster Terraform state from Kubernetes cluster", self.policy, cancel=self.cancel
        ).run(fetch)

    def get_cluster_uuid(self) -> str:
        """
        Fetch the cluster UUID.

        Raises:
            ExhaustedRetriesError: The UUID record could not be read
        """
        def fetch() -> str:
            record = self.store.get(RecordKind.CONFIG_MAP, self.system_namespace, CLUSTER_UUID_NAME)
            return ClusterUUIDRecord.from_record(record).uuid

        return RetryLoop.from_policy(
            "Get Cluster UUID from the Kubernetes cluster", self.policy, cancel=self.cancel
        ).run(fetch)
