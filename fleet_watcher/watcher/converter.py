'''
Conversion of KubeVirt resources (as returned by the custom objects API) into the inventory models.
'''

import datetime
from typing import Callable, Optional

import fleet_watcher.constants as const
from fleet_watcher.models.custom_errors import ResourceConversionError
from fleet_watcher.models.inventory import VM, UnrecognizedStatus, VMStatus, classify_printable_status
from fleet_watcher.models.migration import (
    TERMINAL_PHASES,
    Migration,
    MigrationDirection,
    MigrationTransition,
)
from fleet_watcher.utils import format_age, parse_memory, parse_timestamp, utcnow
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)

# status -> (phase, ready, migration status)
STATUS_DETAILS = {
    VMStatus.stopped: ("Stopped", False, None),
    VMStatus.starting: ("Starting", False, None),
    VMStatus.running: ("Running", True, None),
    VMStatus.migrating: ("Migrating", True, "migrating"),
    VMStatus.waiting_for_receiver: ("WaitingForReceiver", True, "migrating"),
    VMStatus.unknown: ("Unknown", False, None),
}

# Statuses for which the live instance is looked up
ENRICHED_STATUSES = (VMStatus.running, VMStatus.migrating, VMStatus.waiting_for_receiver)

VMILookup = Callable[[str, str], Optional[dict]]


def _get(obj: Optional[dict], *path, default=None):
    current = obj
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


def _metadata(obj) -> dict:
    if not isinstance(obj, dict):
        raise ResourceConversionError(f"unexpected object type: {type(obj).__name__}")
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ResourceConversionError("object has no metadata.name")
    return metadata


def bytes_to_mb(value: int) -> int:
    return int(value // (1024 * 1024))


def bytes_to_gb(value: int) -> int:
    return int(value // (1024 * 1024 * 1024))


def convert_vm(
    obj: dict,
    cluster: str,
    vmi_lookup: Optional[VMILookup] = None,
    now: Optional[datetime.datetime] = None,
) -> VM:
    """
    Convert a VirtualMachine object into the VM model.

    Disk size defaults to a placeholder until the root volume capacity is known,
    it is an approximation rather than a measured value.
    """
    metadata = _metadata(obj)
    name = metadata["name"]

    vm = VM(
        id=name,
        name=name,
        cluster=cluster,
        namespace=metadata.get("namespace", ""),
        age=format_age(parse_timestamp(metadata.get("creationTimestamp")), now),
        disk=const.DEFAULT_DISK_GB,
    )

    status = classify_printable_status(_get(obj, "status", "printableStatus"))
    if isinstance(status, UnrecognizedStatus):
        vm.status = status.value
        vm.phase = status.raw
        vm.ready = False
    else:
        phase, ready, migration_status = STATUS_DETAILS[status]
        vm.status = status.value
        vm.phase = phase
        vm.ready = ready
        vm.migration_status = migration_status

    domain = _get(obj, "spec", "template", "spec", "domain", default={})
    sockets = _get(domain, "cpu", "sockets")
    if sockets:
        vm.cpu = int(sockets)
    guest_memory = _get(domain, "memory", "guest") or _get(domain, "resources", "requests", "memory")
    if guest_memory:
        try:
            vm.memory = bytes_to_mb(parse_memory(guest_memory))
        except ValueError as e:
            logger.warning("Unable to parse memory of VM %s: %s", name, e)

    if vmi_lookup is not None and status in ENRICHED_STATUSES:
        try:
            vmi = vmi_lookup(vm.namespace, name)
        except Exception as e:
            logger.warning("Failed to get VMI for VM %s in cluster %s: %s", name, cluster, e)
            vmi = None
        if vmi:
            enrich_vm_with_instance(vm, vmi)

    return vm


def enrich_vm_with_instance(vm: VM, vmi: dict):
    """Add live data from the VirtualMachineInstance: node, IP, phase, sizing."""
    node_name = _get(vmi, "status", "nodeName")
    if node_name:
        vm.node_name = node_name

    for iface in _get(vmi, "status", "interfaces", default=[]):
        ip = iface.get("ipAddress") if isinstance(iface, dict) else None
        if ip:
            vm.ip = ip
            break

    phase = _get(vmi, "status", "phase")
    if phase:
        vm.phase = phase
        vm.ready = phase == "Running"

    sockets = _get(vmi, "spec", "domain", "cpu", "sockets")
    if sockets:
        vm.cpu = int(sockets)

    guest_memory = _get(vmi, "spec", "domain", "memory", "guest")
    if guest_memory:
        try:
            vm.memory = bytes_to_mb(parse_memory(guest_memory))
        except ValueError as e:
            logger.warning("Unable to parse VMI memory of VM %s: %s", vm.name, e)

    for volume in _get(vmi, "status", "volumeStatus", default=[]):
        if not isinstance(volume, dict) or volume.get("name") != const.ROOT_DISK_VOLUME:
            continue
        storage = _get(volume, "persistentVolumeClaimInfo", "capacity", "storage")
        if storage:
            try:
                storage_bytes = parse_memory(storage)
            except ValueError as e:
                logger.warning("Unable to parse root disk capacity of VM %s: %s", vm.name, e)
                break
            if storage_bytes > 0:
                vm.disk = bytes_to_gb(storage_bytes)
        break


def is_migration_completed(obj: dict) -> bool:
    '''
    A migration is finished when any of these hold:
    - an AbortRequested condition is True
    - it is being deleted while not in a terminal phase
    - KubeVirt flagged the migration state as completed
    - the phase is terminal
    '''
    phase = _get(obj, "status", "phase", default="")
    for condition in _get(obj, "status", "conditions", default=[]):
        if (
            isinstance(condition, dict)
            and condition.get("type") == "AbortRequested"
            and str(condition.get("status")) == "True"
        ):
            return True
    if _get(obj, "metadata", "deletionTimestamp") and phase not in TERMINAL_PHASES:
        return True
    if _get(obj, "status", "migrationState", "completed") is True:
        return True
    return phase in TERMINAL_PHASES


def convert_migration(obj: dict, cluster: str, datacenter_id: str) -> Migration:
    """Convert a VirtualMachineInstanceMigration object into the Migration model."""
    metadata = _metadata(obj)
    spec = obj.get("spec") or {}
    state = _get(obj, "status", "migrationState", default={})

    vm_name = spec.get("vmiName", "")
    migration = Migration(
        id=metadata["name"],
        uid=metadata.get("uid", ""),
        vm_id=vm_name,
        vm_name=vm_name,
        namespace=metadata.get("namespace", ""),
        cluster=cluster,
        datacenter_id=datacenter_id,
        phase=_get(obj, "status", "phase", default=""),
        source_node=state.get("sourceNode", ""),
        target_node=state.get("targetNode", ""),
        source_pod=state.get("sourcePod", ""),
        target_pod=state.get("targetPod", ""),
        start_time=parse_timestamp(state.get("startTimestamp")),
        end_time=parse_timestamp(state.get("endTimestamp")),
        completed=is_migration_completed(obj),
        created_at=parse_timestamp(metadata.get("creationTimestamp")) or utcnow(),
        updated_at=utcnow(),
        labels=metadata.get("labels") or {},
    )

    send_to = spec.get("sendTo") or {}
    receive_id = _get(spec, "receive", "migrationID", default="")
    if send_to:
        migration.direction = MigrationDirection.outgoing
        migration.source_cluster = cluster
        migration.send_to_url = send_to.get("connectURL", "")
        migration.migration_correlation_id = send_to.get("migrationID", "")
    elif receive_id:
        migration.direction = MigrationDirection.incoming
        migration.target_cluster = cluster
        migration.receive_from_id = receive_id
        migration.migration_correlation_id = receive_id
    else:
        migration.direction = MigrationDirection.unknown

    transitions = []
    for item in _get(obj, "status", "phaseTransitionTimestamps", default=[]):
        if not isinstance(item, dict):
            continue
        timestamp = parse_timestamp(item.get("phaseTransitionTimestamp"))
        if item.get("phase") and timestamp is not None:
            transitions.append(MigrationTransition(phase=item["phase"], timestamp=timestamp))
    migration.phase_transitions = sorted(transitions, key=lambda t: t.timestamp)

    return migration
