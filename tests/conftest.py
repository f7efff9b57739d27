"""
Pytest configuration and shared fixtures
"""

import datetime
import tempfile
from unittest.mock import Mock
import pytest

from fleet_watcher.models.config import (
    ClusterConfig,
    ClusterInfo,
    DatacenterConfig,
    DatacenterDefinition,
    WatcherSettings,
)
from fleet_watcher.models.inventory import VM
from fleet_watcher.store.datastore import DataStore


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, start=None):
        self.now = start or datetime.datetime(2025, 1, 1, 10, 0, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + datetime.timedelta(seconds=seconds)


class FakeTimer:
    """Records requested waits instead of sleeping"""

    def __init__(self, hook=None):
        self.delays = []
        self.hook = hook

    def wait(self, seconds):
        self.delays.append(seconds)
        if self.hook is not None:
            self.hook(len(self.delays))
        return False

    def cancelled(self):
        return False

    def cancel(self):
        pass


@pytest.fixture
def temp_output_dir():
    """Create a temporary output directory"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "fleet-watcher.db")


@pytest.fixture
def store(db_path):
    """Store seeded with the built-in sample data"""
    data_store = DataStore(db_path, search_paths=[])
    yield data_store
    data_store.close()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def timer_factory():
    """Build FakeTimer instances, optionally with a hook called after every wait"""
    return FakeTimer


@pytest.fixture
def make_vm():
    """Factory for VM models"""

    def _make_vm(vm_id="vm-100", cluster="cluster-a", **kwargs):
        defaults = dict(
            id=vm_id,
            name=vm_id,
            status="running",
            phase="Running",
            cpu=2,
            memory=4096,
            disk=100,
            cluster=cluster,
            namespace="default",
            ready=True,
        )
        defaults.update(kwargs)
        return VM(**defaults)

    return _make_vm


@pytest.fixture
def vm_object():
    """Factory for KubeVirt VirtualMachine objects as returned by the custom objects API"""

    def _vm_object(name="web-1", printable_status="Running", namespace="default", sockets=2, memory="4Gi", created=None):
        obj = {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachine",
            "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
            "spec": {
                "template": {
                    "spec": {
                        "domain": {
                            "cpu": {"sockets": sockets},
                            "memory": {"guest": memory},
                        }
                    }
                }
            },
            "status": {},
        }
        if printable_status is not None:
            obj["status"]["printableStatus"] = printable_status
        if created is not None:
            obj["metadata"]["creationTimestamp"] = created
        return obj

    return _vm_object


@pytest.fixture
def migration_object():
    """Factory for KubeVirt VirtualMachineInstanceMigration objects"""

    def _migration_object(name="mig-1", vmi="web-1", phase="Running", uid=None, send_to=None, receive_id=None, **status):
        spec = {"vmiName": vmi}
        if send_to is not None:
            spec["sendTo"] = send_to
        if receive_id is not None:
            spec["receive"] = {"migrationID": receive_id}
        obj = {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachineInstanceMigration",
            "metadata": {
                "name": name,
                "namespace": "default",
                "uid": uid or f"uid-{name}",
                "creationTimestamp": "2025-01-01T10:00:00Z",
            },
            "spec": spec,
            "status": {"phase": phase},
        }
        obj["status"].update(status)
        return obj

    return _migration_object


@pytest.fixture
def watcher_config():
    """Two datacenters matching the sample data, one cluster each"""
    return DatacenterConfig(
        datacenters=[
            DatacenterDefinition(
                id="dc-stockholm-north",
                name="Stockholm North DC",
                location="Kista, Stockholm",
                coordinates=[59.42, 17.95],
                clusters=[ClusterInfo(name="cluster-a", kubeconfig="kubeconfigs/a.yaml")],
            ),
            DatacenterDefinition(
                id="dc-solna",
                name="Stockholm Solna DC",
                location="Solna",
                coordinates=[59.38, 17.98],
                clusters=[ClusterInfo(name="cluster-b", kubeconfig="/abs/b.yaml")],
            ),
        ],
        watcher=WatcherSettings(migration_timeout=300, cleanup_interval=60),
        base_dir="/etc/fleet",
    )


@pytest.fixture
def cluster_config():
    return ClusterConfig(name="cluster-a", kubeconfig="/tmp/kubeconfig-a", datacenter_id="dc-stockholm-north")


@pytest.fixture
def mock_krkn_k8s():
    """Create mock KrknKubernetes client"""
    mock_k8s = Mock()
    mock_k8s.custom_object_client = Mock()
    mock_k8s.custom_object_client.list_cluster_custom_object.return_value = {"items": []}
    return mock_k8s
