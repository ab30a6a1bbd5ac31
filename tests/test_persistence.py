"""
Tests for final state persistence.
"""

import pytest

from infrastate.errors import AggregateError, ExhaustedRetriesError, InvalidRecordNameError, NoStateError
from infrastate.manifests import (
    CLOUD_DISCOVERY_KEY,
    CLUSTER_STATE_KEY,
    CLUSTER_STATE_NAME,
    LABEL_NODE_GROUP,
    MASTER_DEVICE_PATH_NAME,
    NODE_GROUP_SETTINGS_KEY,
    NODE_STATE_KEY,
    PROVIDER_CLUSTER_CONFIGURATION_NAME,
)
from infrastate.models import ProvisioningOutputs, Record, RecordKind
from infrastate.persistence import (
    create_node_state,
    delete_state,
    save_cluster_state,
    save_master_node_state,
    save_node_state,
)


def _get(store, name, namespace="d8-system"):
    return store.inner.get(RecordKind.SECRET, namespace, name)


class TestNodeState:
    """Test node state saves."""

    def test_create_node_state_carries_settings_only(self, store, policy):
        create_node_state(store, "worker-0", "worker", b"settings", policy=policy)

        record = _get(store, "d8-node-terraform-state-worker-0")
        assert record.data == {NODE_GROUP_SETTINGS_KEY: b"settings"}
        assert record.labels[LABEL_NODE_GROUP] == "worker"

    def test_save_node_state_replaces_record(self, store, policy):
        create_node_state(store, "worker-0", "worker", b"settings", policy=policy)
        save_node_state(store, "worker-0", "worker", b"state", b"settings", policy=policy)

        assert _get(store, "d8-node-terraform-state-worker-0").data == {
            NODE_STATE_KEY: b"state",
            NODE_GROUP_SETTINGS_KEY: b"settings",
        }
        assert store.count("update") == 1

    def test_empty_state_raises_without_writing(self, store, policy):
        with pytest.raises(NoStateError):
            save_node_state(store, "worker-0", "worker", b"", b"settings", policy=policy)
        assert store.calls == []

    @pytest.mark.parametrize("node_name,node_group", [("worker-0", ""), ("", "worker")])
    def test_empty_identity_rejected_before_store_calls(self, store, policy, node_name, node_group):
        with pytest.raises(InvalidRecordNameError):
            create_node_state(store, node_name, node_group, b"settings", policy=policy)
        with pytest.raises(InvalidRecordNameError):
            save_node_state(store, node_name, node_group, b"state", b"settings", policy=policy)
        assert store.calls == []

    def test_exhausted_retries_propagate(self, store, policy):
        store.fail("create", times=None)
        with pytest.raises(ExhaustedRetriesError) as exc_info:
            save_node_state(store, "worker-0", "worker", b"state", None, policy=policy)

        assert "Save Terraform state for Node 'worker-0'" in str(exc_info.value)
        assert store.count("create") == policy.attempts


class TestMasterNodeState:
    """Test master node saves writing two records."""

    def test_writes_both_records(self, store, policy):
        save_master_node_state(store, "master-0", b"state", b"/dev/sdb", policy=policy)

        node = _get(store, "d8-node-terraform-state-master-0")
        assert node.labels[LABEL_NODE_GROUP] == "master"
        assert node.data == {NODE_STATE_KEY: b"state"}
        assert _get(store, MASTER_DEVICE_PATH_NAME).data == {"master-0": b"/dev/sdb"}

    def test_masters_share_device_path_record(self, store, policy):
        save_master_node_state(store, "master-0", b"s0", b"/dev/sdb", policy=policy)
        save_master_node_state(store, "master-1", b"s1", b"/dev/vdb", policy=policy)

        assert _get(store, MASTER_DEVICE_PATH_NAME).data == {"master-0": b"/dev/sdb", "master-1": b"/dev/vdb"}

    def test_partial_failure_aggregates_failed_record_only(self, store, policy):
        store.fail("create", name=MASTER_DEVICE_PATH_NAME, times=None)

        with pytest.raises(AggregateError) as exc_info:
            save_master_node_state(store, "master-0", b"state", b"/dev/sdb", policy=policy)

        err = exc_info.value
        assert err.failed_names == [f'Secret "{MASTER_DEVICE_PATH_NAME}"']
        assert isinstance(err.errors[0], ExhaustedRetriesError)
        # the successful write is kept
        assert _get(store, "d8-node-terraform-state-master-0").data == {NODE_STATE_KEY: b"state"}

    def test_both_failures_reported(self, store, policy):
        store.fail("create", times=None)
        with pytest.raises(AggregateError) as exc_info:
            save_master_node_state(store, "master-0", b"state", b"/dev/sdb", policy=policy)
        assert len(exc_info.value.failures) == 2

    def test_empty_state_raises(self, store, policy):
        with pytest.raises(NoStateError):
            save_master_node_state(store, "master-0", b"", b"/dev/sdb", policy=policy)


class TestClusterState:
    """Test cluster state saves."""

    def _provider_configuration(self, store):
        store.inner.create(Record(
            namespace="kube-system",
            name=PROVIDER_CLUSTER_CONFIGURATION_NAME,
            data={"cloud-provider-cluster-configuration.yaml": b"kind: Cfg"},
        ))

    def test_saves_state_and_publishes_discovery(self, store, policy):
        self._provider_configuration(store)
        save_cluster_state(store, ProvisioningOutputs(state=b"state", cloud_discovery=b"discovery"), policy=policy)

        cluster = _get(store, CLUSTER_STATE_NAME)
        assert cluster.data[CLUSTER_STATE_KEY] == b"state"
        assert cluster.data[CLOUD_DISCOVERY_KEY] == b"discovery"

        provider = _get(store, PROVIDER_CLUSTER_CONFIGURATION_NAME, "kube-system")
        assert provider.data == {
            "cloud-provider-cluster-configuration.yaml": b"kind: Cfg",
            CLOUD_DISCOVERY_KEY: b"discovery",
        }

    @pytest.mark.parametrize("outputs", [None, ProvisioningOutputs()])
    def test_no_state_raises(self, store, policy, outputs):
        with pytest.raises(NoStateError):
            save_cluster_state(store, outputs, policy=policy)
        assert store.calls == []

    def test_missing_provider_configuration_fails(self, store, policy):
        with pytest.raises(ExhaustedRetriesError) as exc_info:
            save_cluster_state(store, ProvisioningOutputs(state=b"state", cloud_discovery=b"d"), policy=policy)

        assert "Update cloud discovery data" in str(exc_info.value)
        # the state itself was recorded first
        assert _get(store, CLUSTER_STATE_NAME).data[CLUSTER_STATE_KEY] == b"state"

    def test_empty_discovery_keeps_published_value(self, store, policy):
        store.inner.create(Record(
            namespace="kube-system",
            name=PROVIDER_CLUSTER_CONFIGURATION_NAME,
            data={CLOUD_DISCOVERY_KEY: b"published"},
        ))
        save_cluster_state(store, ProvisioningOutputs(state=b"state"), policy=policy)

        assert store.count("merge_patch", PROVIDER_CLUSTER_CONFIGURATION_NAME) == 0
        provider = _get(store, PROVIDER_CLUSTER_CONFIGURATION_NAME, "kube-system")
        assert provider.data == {CLOUD_DISCOVERY_KEY: b"published"}
        assert CLOUD_DISCOVERY_KEY not in _get(store, CLUSTER_STATE_NAME).data


class TestDeleteState:

    def test_deletes_record(self, store, policy):
        create_node_state(store, "worker-0", "worker", None, policy=policy)
        assert delete_state(store, "d8-node-terraform-state-worker-0", policy=policy) is True
        assert len(store.inner) == 0

    def test_absent_record_counts_as_deleted(self, store, policy):
        assert delete_state(store, "d8-node-terraform-state-gone", policy=policy) is False
        assert store.count("delete") == 1

    def test_transient_failure_retried(self, store, policy):
        create_node_state(store, "worker-0", "worker", None, policy=policy)
        store.fail("delete", times=2)
        assert delete_state(store, "d8-node-terraform-state-worker-0", policy=policy) is True
        assert store.count("delete") == 3
