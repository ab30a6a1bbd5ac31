"""
State sinks for intermediate checkpoints.

The provisioning engine calls save_state() every time its working state
changes (e.g. on every write of the state file). Checkpoints are best effort:
a failure is logged and swallowed, a later checkpoint or the final save is
expected to succeed. Checkpointing must never abort the provisioning run.

The engine may report a zero-sized state file while it rewrites it, so empty
snapshots are skipped, never treated as "state cleared".
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .errors import InfrastateError, OperationCancelledError
from .manifests import ClusterStateRecord, NodeStateRecord, node_identity
from .models import ProvisioningOutputs, RetryPolicy
from .retry import RetryLoop
from .settings import get_settings
from .store.base import RecordStore
from .upsert import UpsertProtocol, UpsertTask

logger = logging.getLogger(__name__)


class StateSink(ABC):
    """
    Destination for intermediate provisioning state.

    save_state() is expected to be called sequentially for one sink instance.
    """

    def __init__(
        self,
        store: RecordStore,
        namespace: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        cancel: Optional[threading.Event] = None,
    ):
        settings = get_settings()
        self.store = store
        self.namespace = namespace or settings.namespace
        self.policy = policy or settings.checkpoint_policy
        self.cancel = cancel
        self.last_error: Optional[Exception] = None

    def save_state(self, outputs: Optional[ProvisioningOutputs]) -> bool:
        """
        Checkpoint the snapshot.

        Args:
            outputs: Latest full snapshot from the provisioning engine

        Returns:
            True if the checkpoint was written, False if it was skipped or failed

        Raises:
            OperationCancelledError: The cancel event was set
        """
        if outputs is None or not outputs.has_state:
            return False

        task = self._build_task(outputs)
        logger.debug(f"Intermediate save of {self.description} in cluster...")
        try:
            RetryLoop.from_policy(task.name, self.policy, silent=True, cancel=self.cancel).run(task.run)
        except OperationCancelledError:
            raise
        except InfrastateError as e:
            self.last_error = e
            logger.warning(f"Intermediate {self.description} was not saved in cluster: {e}")
            return False

        self.last_error = None
        logger.debug(f"Intermediate {self.description} was saved in cluster")
        return True

    @property
    @abstractmethod
    def description(self) -> str:
        """What is being saved, for log messages."""

    @abstractmethod
    def _build_task(self, outputs: ProvisioningOutputs) -> UpsertTask:
        """Build the PatchOrCreate task writing this snapshot."""


class ClusterStateSaver(StateSink):
    """Saves intermediate base infrastructure state to the cluster state record."""

    @property
    def description(self) -> str:
        return "base infra"

    def _build_task(self, outputs: ProvisioningOutputs) -> UpsertTask:
        shape = ClusterStateRecord(state=outputs.state, cloud_discovery=outputs.cloud_discovery or None)
        return UpsertTask.for_record(
            self.store,
            "Save Cluster intermediate Terraform state",
            shape.to_record(self.namespace),
            protocol=UpsertProtocol.PATCH_OR_CREATE,
            patch=shape.state_patch,
        )


class NodeStateSaver(StateSink):
    """
    Saves intermediate state of one node.

    Patches the node's state key, or creates the record when the node is new.
    node_group_settings is None for master nodes: their records carry no
    group settings key.
    """

    def __init__(
        self,
        store: RecordStore,
        node_name: str,
        node_group: str,
        node_group_settings: Optional[bytes] = None,
        namespace: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        cancel: Optional[threading.Event] = None,
    ):
        super().__init__(store, namespace=namespace, policy=policy, cancel=cancel)
        # fail fast on identities the store or the fleet reader would reject
        node_identity(node_name, node_group)
        self.node_name = node_name
        self.node_group = node_group
        self.node_group_settings = node_group_settings

    @property
    def description(self) -> str:
        return f"state for node {self.node_name}"

    def _build_task(self, outputs: ProvisioningOutputs) -> UpsertTask:
        shape = NodeStateRecord(
            node_name=self.node_name,
            node_group=self.node_group,
            state=outputs.state,
            settings=self.node_group_settings,
        )
        return UpsertTask.for_record(
            self.store,
            f"Save intermediate Terraform state for Node {self.node_name!r}",
            shape.to_record(self.namespace),
            protocol=UpsertProtocol.PATCH_OR_CREATE,
            patch=shape.state_patch,
        )
