'''
Cross-cluster migration detection.

No cluster tells us "this VM moved to cluster X". A migration is inferred when a VM
disappears from one cluster and the same VM id shows up in another one before the
migration timeout elapses. VM identity is name based, so two different VMs sharing a
name in two clusters are reported as a migration.

The detector is driven by one consumer (see detector_loop), so its maps are not locked.
'''

import datetime
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import fleet_watcher.constants as const
from fleet_watcher.models.inventory import VM
from fleet_watcher.models.migration import MigrationEvent, PendingMigration
from fleet_watcher.utils import utcnow
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class VMObserved:
    vm: VM
    cluster: str
    datacenter_id: str


@dataclass
class VMRemoved:
    vm: VM
    cluster: str
    datacenter_id: str


@dataclass
class CleanupTick:
    pass


DetectorMessage = Union[VMObserved, VMRemoved, CleanupTick]


class MigrationDetector:
    def __init__(
        self,
        migration_timeout: float = const.MIGRATION_TIMEOUT,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self.migration_timeout = datetime.timedelta(seconds=migration_timeout)
        self.clock = clock
        self.vm_cluster_map: Dict[str, str] = {}  # VM id -> current cluster
        self.vm_last_seen: Dict[str, datetime.datetime] = {}  # VM id -> last seen
        self.pending_migrations: Dict[str, PendingMigration] = {}

    def handle(self, message: DetectorMessage) -> Optional[MigrationEvent]:
        if isinstance(message, VMObserved):
            return self.on_vm_added(message.vm, message.cluster, message.datacenter_id)
        if isinstance(message, VMRemoved):
            self.on_vm_deleted(message.vm, message.cluster, message.datacenter_id)
        elif isinstance(message, CleanupTick):
            self.cleanup_stale_entries()
        else:
            logger.warning("Unknown detector message: %r", message)
        return None

    def _annotate(
        self,
        vm: VM,
        from_cluster: str,
        to_cluster: str,
        from_datacenter: str,
        to_datacenter: str,
        now: datetime.datetime,
    ) -> MigrationEvent:
        vm.last_migrated_at = now
        vm.previous_cluster = from_cluster
        vm.migration_status = "completed"
        vm.migration_source = from_cluster
        vm.migration_target = to_cluster
        return MigrationEvent(
            vm=vm,
            from_cluster=from_cluster,
            to_cluster=to_cluster,
            from_datacenter=from_datacenter,
            to_datacenter=to_datacenter,
            migrated_at=now,
        )

    def on_vm_added(self, vm: VM, cluster: str, datacenter_id: str) -> Optional[MigrationEvent]:
        """
        Record that a VM is present in a cluster. Returns a MigrationEvent and annotates
        the VM when the observation completes a migration.
        """
        vm_id = vm.id
        now = self.clock()

        previous_cluster = self.vm_cluster_map.get(vm_id)
        self.vm_cluster_map[vm_id] = cluster
        self.vm_last_seen[vm_id] = now

        pending = self.pending_migrations.pop(vm_id, None)
        if pending is not None:
            # Deleted and re-created in the same cluster, not a migration
            if pending.from_cluster == cluster:
                logger.info("VM %s reappeared in cluster %s, not a migration", vm_id, cluster)
                return None
            logger.info(
                "Migration detected: VM %s moved from cluster %s to cluster %s",
                vm_id,
                pending.from_cluster,
                cluster,
            )
            return self._annotate(
                vm, pending.from_cluster, cluster, pending.datacenter_id, datacenter_id, now
            )

        # Cluster changed without a delete in between, e.g. streams delivered out of order
        if previous_cluster and previous_cluster != cluster:
            logger.info(
                "Direct migration detected: VM %s moved from cluster %s to cluster %s",
                vm_id,
                previous_cluster,
                cluster,
            )
            # The previous datacenter is not tracked, assume the same one
            return self._annotate(vm, previous_cluster, cluster, datacenter_id, datacenter_id, now)

        return None

    def on_vm_modified(self, vm: VM, cluster: str, datacenter_id: str) -> Optional[MigrationEvent]:
        now = self.clock()
        self.vm_last_seen[vm.id] = now
        previous_cluster = self.vm_cluster_map.get(vm.id)
        if previous_cluster and previous_cluster != cluster:
            self.vm_cluster_map[vm.id] = cluster
            logger.info(
                "Migration detected via modify: VM %s moved from cluster %s to cluster %s",
                vm.id,
                previous_cluster,
                cluster,
            )
            return self._annotate(vm, previous_cluster, cluster, datacenter_id, datacenter_id, now)
        return None

    def on_vm_deleted(self, vm: VM, cluster: str, datacenter_id: str):
        """A deletion is only a suspicion until the timeout confirms it."""
        # A delete from a cluster the VM already left must not start a new pending entry
        current = self.vm_cluster_map.get(vm.id)
        if current is not None and current != cluster:
            logger.debug("Ignoring delete of VM %s from cluster %s, it now runs in %s", vm.id, cluster, current)
            return
        self.pending_migrations[vm.id] = PendingMigration(
            vm=vm,
            from_cluster=cluster,
            last_seen_at=self.clock(),
            datacenter_id=datacenter_id,
        )
        logger.info(
            "VM %s disappeared from cluster %s - monitoring for potential migration", vm.id, cluster
        )

    def cleanup_stale_entries(self) -> List[str]:
        """Drop pending migrations older than the timeout. Returns the dropped VM ids."""
        now = self.clock()
        stale = [
            vm_id
            for vm_id, pending in self.pending_migrations.items()
            if now - pending.last_seen_at > self.migration_timeout
        ]
        for vm_id in stale:
            logger.info("VM %s deletion confirmed (not migrated) - removing from pending", vm_id)
            self.pending_migrations.pop(vm_id, None)
            self.vm_cluster_map.pop(vm_id, None)
            self.vm_last_seen.pop(vm_id, None)
        return stale

    def get_pending_migrations(self) -> Dict[str, PendingMigration]:
        return dict(self.pending_migrations)
