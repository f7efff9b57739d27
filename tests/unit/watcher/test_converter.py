"""
KubeVirt resource conversion tests
"""

import datetime
from unittest.mock import Mock
import pytest

from fleet_watcher.models.custom_errors import ResourceConversionError
from fleet_watcher.models.migration import MigrationDirection
from fleet_watcher.watcher.converter import (
    bytes_to_gb,
    bytes_to_mb,
    convert_migration,
    convert_vm,
    is_migration_completed,
)


NOW = datetime.datetime(2025, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def vmi_object():
    return {
        "metadata": {"name": "web-1", "namespace": "default"},
        "spec": {"domain": {"cpu": {"sockets": 4}, "memory": {"guest": "8Gi"}}},
        "status": {
            "nodeName": "worker-3",
            "phase": "Running",
            "interfaces": [{"name": "default"}, {"ipAddress": "10.0.0.12"}],
            "volumeStatus": [
                {"name": "cloudinit"},
                {"name": "rootdisk", "persistentVolumeClaimInfo": {"capacity": {"storage": "30Gi"}}},
            ],
        },
    }


class TestConvertVM:
    """Test VirtualMachine conversion"""

    @pytest.mark.parametrize(
        "printable,status,phase,ready,migration_status",
        [
            ("Stopped", "stopped", "Stopped", False, None),
            ("Starting", "starting", "Starting", False, None),
            ("Running", "running", "Running", True, None),
            ("Migrating", "migrating", "Migrating", True, "migrating"),
            ("WaitingForReceiver", "waitingforreceiver", "WaitingForReceiver", True, "migrating"),
            (None, "unknown", "Unknown", False, None),
        ],
    )
    def test_status_mapping(self, vm_object, printable, status, phase, ready, migration_status):
        """Test each recognized printable status"""
        vm = convert_vm(vm_object(printable_status=printable), "cluster-a")
        assert vm.status == status
        assert vm.phase == phase
        assert vm.ready is ready
        assert vm.migration_status == migration_status

    def test_unrecognized_status_is_kept(self, vm_object):
        """Test an unknown printable status is lower-cased into status and kept verbatim in phase"""
        vm = convert_vm(vm_object(printable_status="ErrorUnschedulable"), "cluster-a")
        assert vm.status == "errorunschedulable"
        assert vm.phase == "ErrorUnschedulable"
        assert vm.ready is False

    def test_basic_fields(self, vm_object):
        """Test identity, sizing and age"""
        obj = vm_object(name="db-1", printable_status="Stopped", sockets=8, memory="16Gi",
                        created="2025-01-01T09:30:00Z")
        vm = convert_vm(obj, "cluster-a", now=NOW)
        assert vm.id == "db-1"
        assert vm.name == "db-1"
        assert vm.cluster == "cluster-a"
        assert vm.namespace == "default"
        assert vm.cpu == 8
        assert vm.memory == 16384
        assert vm.disk == 100
        assert vm.age == "2h"

    def test_running_vm_is_enriched_from_instance(self, vm_object, vmi_object):
        """Test live data from the VMI overrides the template"""
        lookup = Mock(return_value=vmi_object)
        vm = convert_vm(vm_object(), "cluster-a", vmi_lookup=lookup)

        lookup.assert_called_once_with("default", "web-1")
        assert vm.node_name == "worker-3"
        assert vm.ip == "10.0.0.12"
        assert vm.phase == "Running"
        assert vm.ready is True
        assert vm.cpu == 4
        assert vm.memory == 8192
        assert vm.disk == 30

    def test_stopped_vm_is_not_enriched(self, vm_object):
        """Test no instance lookup for VMs that are not running"""
        lookup = Mock()
        convert_vm(vm_object(printable_status="Stopped"), "cluster-a", vmi_lookup=lookup)
        lookup.assert_not_called()

    def test_enrichment_failure_is_not_fatal(self, vm_object):
        """Test a failing instance lookup still yields the VM"""
        lookup = Mock(side_effect=RuntimeError("connection refused"))
        vm = convert_vm(vm_object(), "cluster-a", vmi_lookup=lookup)
        assert vm.status == "running"
        assert vm.node_name == ""

    def test_bad_memory_is_ignored(self, vm_object):
        """Test an unparsable memory quantity leaves memory unset"""
        vm = convert_vm(vm_object(memory="lots"), "cluster-a")
        assert vm.memory == 0

    def test_missing_metadata_raises(self):
        """Test objects without a name cannot be converted"""
        with pytest.raises(ResourceConversionError):
            convert_vm({"spec": {}}, "cluster-a")
        with pytest.raises(ResourceConversionError):
            convert_vm("not-an-object", "cluster-a")

    def test_byte_conversions(self):
        """Test MB and GB truncation"""
        assert bytes_to_mb(4 * 1024 ** 3) == 4096
        assert bytes_to_gb(30 * 1024 ** 3 + 5) == 30


class TestConvertMigration:
    """Test VirtualMachineInstanceMigration conversion"""

    def test_outgoing_migration(self, migration_object):
        """Test sendTo marks the migration as outgoing from this cluster"""
        obj = migration_object(send_to={"connectURL": "https://target:8443", "migrationID": "corr-1"})
        migration = convert_migration(obj, "cluster-a", "dc-1")
        assert migration.direction == MigrationDirection.outgoing
        assert migration.source_cluster == "cluster-a"
        assert migration.send_to_url == "https://target:8443"
        assert migration.migration_correlation_id == "corr-1"
        assert migration.vm_id == "web-1"
        assert migration.datacenter_id == "dc-1"
        assert migration.completed is False

    def test_incoming_migration(self, migration_object):
        """Test receive marks the migration as incoming to this cluster"""
        migration = convert_migration(migration_object(receive_id="corr-1"), "cluster-b", "dc-2")
        assert migration.direction == MigrationDirection.incoming
        assert migration.target_cluster == "cluster-b"
        assert migration.receive_from_id == "corr-1"
        assert migration.migration_correlation_id == "corr-1"

    def test_unknown_direction(self, migration_object):
        """Test a plain in-cluster migration"""
        migration = convert_migration(migration_object(), "cluster-a", "dc-1")
        assert migration.direction == MigrationDirection.unknown
        assert migration.created_at == datetime.datetime(2025, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)

    def test_migration_state_and_transitions(self, migration_object):
        """Test node, pod, timing and ordered phase transitions"""
        obj = migration_object(
            phase="Succeeded",
            migrationState={
                "sourceNode": "node-1",
                "targetNode": "node-2",
                "sourcePod": "virt-launcher-a",
                "targetPod": "virt-launcher-b",
                "startTimestamp": "2025-01-01T10:01:00Z",
                "endTimestamp": "2025-01-01T10:05:00Z",
            },
            phaseTransitionTimestamps=[
                {"phase": "Succeeded", "phaseTransitionTimestamp": "2025-01-01T10:05:00Z"},
                {"phase": "Pending", "phaseTransitionTimestamp": "2025-01-01T10:00:00Z"},
                {"phase": "Running", "phaseTransitionTimestamp": "2025-01-01T10:01:00Z"},
            ],
        )
        migration = convert_migration(obj, "cluster-a", "dc-1")
        assert migration.source_node == "node-1"
        assert migration.target_pod == "virt-launcher-b"
        assert migration.start_time.minute == 1
        assert migration.end_time.minute == 5
        assert [t.phase for t in migration.phase_transitions] == ["Pending", "Running", "Succeeded"]
        assert migration.completed is True


class TestMigrationCompleted:
    """Test the completion rules"""

    @pytest.mark.parametrize("phase", ["Succeeded", "Failed"])
    def test_terminal_phase(self, migration_object, phase):
        """Test terminal phases complete a migration"""
        assert is_migration_completed(migration_object(phase=phase)) is True

    def test_running_is_not_completed(self, migration_object):
        """Test an active migration"""
        assert is_migration_completed(migration_object(phase="Running")) is False

    def test_abort_requested(self, migration_object):
        """Test an AbortRequested condition completes the migration"""
        obj = migration_object(conditions=[{"type": "AbortRequested", "status": "True"}])
        assert is_migration_completed(obj) is True
        obj = migration_object(conditions=[{"type": "AbortRequested", "status": "False"}])
        assert is_migration_completed(obj) is False

    def test_deleted_while_active(self, migration_object):
        """Test a migration being deleted before finishing"""
        obj = migration_object(phase="Running")
        obj["metadata"]["deletionTimestamp"] = "2025-01-01T10:03:00Z"
        assert is_migration_completed(obj) is True

    def test_migration_state_completed_flag(self, migration_object):
        """Test KubeVirt's own completed flag"""
        obj = migration_object(phase="Running", migrationState={"completed": True})
        assert is_migration_completed(obj) is True
