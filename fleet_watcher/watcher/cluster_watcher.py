'''
Mirrors one cluster's VirtualMachine and VirtualMachineInstanceMigration resources into the store.

Working Details:
1. Full listing of VMs and migrations, each converted and upserted.
2. Two watch loops (VMs, migrations) in their own threads.
3. A closed stream is reopened after a short delay, a failed open is retried after a longer one.
   There is no retry ceiling, the loops only exit when the watcher is stopped.
4. A bad event is logged and skipped, it never ends the stream.
'''

import os
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set

from kubernetes import watch
from kubernetes.client.rest import ApiException
from krkn_lib.k8s.krkn_kubernetes import KrknKubernetes

import fleet_watcher.constants as const
from fleet_watcher.models.config import ClusterConfig, WatcherSettings
from fleet_watcher.models.custom_errors import (
    ClusterCredentialError,
    InvalidOperationError,
    NotFoundError,
)
from fleet_watcher.models.inventory import VM
from fleet_watcher.store.datastore import DataStore
from fleet_watcher.utils.logger import get_logger
from fleet_watcher.utils.timer import CancellableTimer
from fleet_watcher.watcher.converter import convert_migration, convert_vm
from fleet_watcher.watcher.detector_loop import MigrationDetectorLoop
from fleet_watcher.watcher.events import EventHub
from fleet_watcher.watcher.migration_detector import VMObserved, VMRemoved

logger = get_logger(__name__)

VM_KIND = "vm"
MIGRATION_KIND = "migration"


class ClusterWatcher:
    def __init__(
        self,
        config: ClusterConfig,
        store: DataStore,
        detector_loop: Optional[MigrationDetectorLoop] = None,
        hub: Optional[EventHub] = None,
        settings: Optional[WatcherSettings] = None,
        kubeconfig_path: Optional[str] = None,
        timer: Optional[CancellableTimer] = None,
    ):
        self.config = config
        self.store = store
        self.detector_loop = detector_loop
        self.hub = hub
        self.settings = settings or WatcherSettings()
        self.kubeconfig = kubeconfig_path or config.kubeconfig

        if not self.kubeconfig or not os.path.isfile(self.kubeconfig):
            raise ClusterCredentialError(
                f"kubeconfig {self.kubeconfig} for cluster {config.name} not found"
            )
        try:
            self.krkn_k8s = KrknKubernetes(kubeconfig_path=self.kubeconfig)
        except Exception as e:
            raise ClusterCredentialError(
                f"unable to build client for cluster {config.name} from {self.kubeconfig}: {e}"
            ) from e
        self.custom_obj_api = self.krkn_k8s.custom_object_client

        self._stop_event = threading.Event()
        self.timer = timer or CancellableTimer(self._stop_event)
        self._threads: List[threading.Thread] = []
        self._watch_handles: Dict[str, watch.Watch] = {}
        self._handles_lock = threading.Lock()
        self._removed_migration_uids: Set[str] = set()
        self._removed_uid_order: Deque[str] = deque(maxlen=const.REMOVED_MIGRATION_MEMORY)
        logger.debug("ClusterWatcher initialized for cluster %s with kubeconfig: %s", config.name, self.kubeconfig)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def datacenter_id(self) -> str:
        return self.config.datacenter_id

    def start(self):
        logger.info("Starting watcher for cluster %s (datacenter: %s)", self.name, self.datacenter_id)

        self.sync_existing_vms()
        self.sync_existing_migrations()

        if self._stop_event.is_set():
            return

        loops = (
            (VM_KIND, const.VM_PLURAL, self.handle_vm_event),
            (MIGRATION_KIND, const.MIGRATION_PLURAL, self.handle_migration_event),
        )
        for kind, plural, handler in loops:
            t = threading.Thread(
                target=self.watch_loop,
                args=(kind, plural, handler),
                name=f"{self.name}-{kind}-watch",
                daemon=True,
            )
            t.start()
            self._threads.append(t)

    def stop(self, timeout: float = 5.0):
        logger.info("Stopping watcher for cluster %s", self.name)
        self._stop_event.set()
        with self._handles_lock:
            for handle in self._watch_handles.values():
                handle.stop()
        for t in self._threads:
            t.join(timeout=timeout)

    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    # Listing

    def _list(self, plural: str) -> List[dict]:
        response = self.custom_obj_api.list_cluster_custom_object(
            const.KUBEVIRT_GROUP, const.KUBEVIRT_VERSION, plural
        )
        return response.get("items", [])

    def sync_existing_vms(self):
        try:
            items = self._list(const.VM_PLURAL)
        except Exception as e:
            logger.error("Failed to sync existing VMs for cluster %s: %s", self.name, e)
            return
        logger.info("Found %d VMs in cluster %s", len(items), self.name)
        for item in items:
            self._dispatch(VM_KIND, self.handle_vm_event, {"type": "ADDED", "object": item})

    def sync_existing_migrations(self):
        try:
            items = self._list(const.MIGRATION_PLURAL)
        except Exception as e:
            logger.error("Failed to sync existing migrations for cluster %s: %s", self.name, e)
            return
        logger.info("Found %d migrations in cluster %s", len(items), self.name)
        for item in items:
            self._dispatch(MIGRATION_KIND, self.handle_migration_event, {"type": "ADDED", "object": item})

    def get_vmi(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self.custom_obj_api.get_namespaced_custom_object(
                const.KUBEVIRT_GROUP, const.KUBEVIRT_VERSION, namespace, const.VMI_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("No VMI for VM %s/%s in cluster %s", namespace, name, self.name)
                return None
            raise

    # Watching

    def _new_watch(self) -> watch.Watch:
        return watch.Watch()

    def watch_loop(self, kind: str, plural: str, handler: Callable[[dict], None]):
        logger.info("Starting %s watch for cluster %s", kind, self.name)
        while not self._stop_event.is_set():
            watch_handle = self._new_watch()
            with self._handles_lock:
                self._watch_handles[kind] = watch_handle

            received = False
            try:
                stream = watch_handle.stream(
                    self.custom_obj_api.list_cluster_custom_object,
                    const.KUBEVIRT_GROUP,
                    const.KUBEVIRT_VERSION,
                    plural,
                    timeout_seconds=self.settings.watch_timeout_seconds,
                )
                for event in stream:
                    received = True
                    if self._stop_event.is_set():
                        break
                    if event.get("type") == "ERROR":
                        logger.warning(
                            "%s watch for cluster %s returned an error: %s", kind, self.name, event.get("object")
                        )
                        break
                    self._dispatch(kind, handler, event)
            except Exception as e:
                watch_handle.stop()
                if self._stop_event.is_set():
                    break
                if not received:
                    logger.warning("Failed to create %s watch for cluster %s: %s", kind, self.name, e)
                    self.timer.wait(self.settings.watch_retry_delay)
                    continue
                logger.warning("%s watch for cluster %s failed: %s", kind, self.name, e)
            else:
                watch_handle.stop()

            if self._stop_event.is_set():
                break
            logger.info("%s watch channel closed for cluster %s, restarting...", kind, self.name)
            self.timer.wait(self.settings.watch_restart_delay)

        logger.info("%s watch for cluster %s stopped", kind, self.name)

    def _dispatch(self, kind: str, handler: Callable[[dict], None], event: dict):
        try:
            handler(event)
        except Exception as e:
            logger.error("Failed to handle %s event for cluster %s: %s", kind, self.name, e)

    # VM events

    def handle_vm_event(self, event: dict):
        event_type = event.get("type")
        obj = event.get("object")

        if event_type in ("ADDED", "MODIFIED"):
            vm = convert_vm(obj, self.name, vmi_lookup=self.get_vmi)
            logger.debug("Processing VM %s (status: %s) from cluster %s", vm.name, vm.status, self.name)
            stored = self.update_vm_in_store(vm)
            if self.detector_loop is not None:
                self.detector_loop.publish(VMObserved(vm=vm, cluster=self.name, datacenter_id=self.datacenter_id))
            if self.hub is not None:
                self.hub.broadcast_event("vm_updated", stored)
        elif event_type == "DELETED":
            vm = convert_vm(obj, self.name)
            self.remove_vm_from_store(vm.id)
            if self.detector_loop is not None:
                self.detector_loop.publish(VMRemoved(vm=vm, cluster=self.name, datacenter_id=self.datacenter_id))
            if self.hub is not None:
                self.hub.broadcast_event("vm_removed", {"id": vm.id, "cluster": self.name, "datacenterId": self.datacenter_id})
        else:
            logger.warning("Unknown VM event type %s in cluster %s", event_type, self.name)

    def update_vm_in_store(self, vm: VM) -> VM:
        """
        Upsert a VM into this cluster's datacenter. Safe to repeat for the same VM,
        which happens after every reconnect.
        """
        dc_id = self.datacenter_id
        try:
            return self.store.update_vm_complete(dc_id, vm.id, vm)
        except NotFoundError:
            pass

        located = self.store.find_vm(vm.id)
        if located is not None and located[0] != dc_id:
            try:
                self.store.migrate_vm(vm.id, located[0], dc_id)
                logger.info("Moved VM %s from datacenter %s to %s", vm.id, located[0], dc_id)
                return self.store.update_vm_complete(dc_id, vm.id, vm)
            except NotFoundError:
                # Removed meanwhile, insert below
                pass

        try:
            stored = self.store.add_vm(dc_id, vm)
            logger.info("Added new VM %s to datacenter %s", vm.name, dc_id)
            return stored
        except InvalidOperationError:
            # Added by another watcher in between
            return self.store.update_vm_complete(dc_id, vm.id, vm)

    def remove_vm_from_store(self, vm_id: str):
        try:
            self.store.remove_vm(self.datacenter_id, vm_id, cluster=self.name)
        except NotFoundError:
            logger.debug(
                "VM %s was not in store for cluster %s (datacenter %s), skipping removal",
                vm_id,
                self.name,
                self.datacenter_id,
            )
            return
        logger.info("Removed VM %s from datacenter %s", vm_id, self.datacenter_id)

    # Migration events

    def _remember_removed(self, uid: str):
        """Track a deleted migration uid, forgetting the oldest once the memory is full."""
        if uid in self._removed_migration_uids:
            return
        if len(self._removed_uid_order) == self._removed_uid_order.maxlen:
            self._removed_migration_uids.discard(self._removed_uid_order[0])
        self._removed_uid_order.append(uid)
        self._removed_migration_uids.add(uid)

    def handle_migration_event(self, event: dict):
        event_type = event.get("type")
        obj = event.get("object")

        if event_type in ("ADDED", "MODIFIED"):
            migration = convert_migration(obj, self.name, self.datacenter_id)
            if migration.uid and migration.uid in self._removed_migration_uids:
                logger.debug("Ignoring %s for deleted migration %s", event_type, migration.id)
                return
            if event_type == "ADDED":
                stored = self.store.add_migration(migration)
            else:
                stored = self.store.update_migration(migration)
            logger.debug(
                "Stored migration %s (phase: %s, direction: %s) from cluster %s",
                migration.id,
                migration.phase,
                migration.direction.value,
                self.name,
            )
            if self.hub is not None:
                self.hub.broadcast_event("migration_updated", stored)
        elif event_type == "DELETED":
            migration = convert_migration(obj, self.name, self.datacenter_id)
            if migration.uid:
                self._remember_removed(migration.uid)
            try:
                self.store.remove_migration(migration.id)
            except NotFoundError:
                logger.debug("Migration %s was not in store, skipping removal", migration.id)
                return
            logger.info("Removed migration %s from cluster %s", migration.id, self.name)
            if self.hub is not None:
                self.hub.broadcast_event("migration_removed", {"id": migration.id, "cluster": self.name})
        else:
            logger.warning("Unknown migration event type %s in cluster %s", event_type, self.name)
