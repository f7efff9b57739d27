'''
Persistent store for the datacenter collection and the migration records.

Working Details:
1. Both collections live in memory and are the source of truth for the running process.
2. Every mutation takes the state lock, applies the change, serializes a snapshot and releases the lock.
3. The snapshot is written to SQLite afterwards under a separate I/O lock, so readers never wait on disk.
4. Snapshots are numbered; a write older than what is already on disk for the same key is skipped.
5. Disk write failures are logged only. A crash between mutation and write loses that mutation.
'''

import datetime
import os
import threading
import time
from typing import Dict, List, Optional, Tuple, Union

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError

import fleet_watcher.constants as const
from fleet_watcher.models.config import DatacenterConfig
from fleet_watcher.models.custom_errors import InvalidOperationError, NotFoundError
from fleet_watcher.models.inventory import Datacenter, DatacenterCollection, VM
from fleet_watcher.models.migration import Migration, MigrationDirection
from fleet_watcher.store.seed import load_seed
from fleet_watcher.utils import utcnow
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)

metadata = sqlalchemy.MetaData()

buckets_table = sqlalchemy.Table(
    "buckets",
    metadata,
    sqlalchemy.Column("bucket", sqlalchemy.TEXT, primary_key=True),
    sqlalchemy.Column("key", sqlalchemy.TEXT, primary_key=True),
    sqlalchemy.Column("value", sqlalchemy.TEXT, nullable=False),
)


def _enable_wal(dbapi_connection, _connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# Fields refreshed from the cluster on every observation
LIVE_VM_FIELDS = (
    "name",
    "status",
    "phase",
    "cpu",
    "memory",
    "disk",
    "cluster",
    "namespace",
    "node_name",
    "ip",
    "ready",
    "age",
)

# Fields set by migration handling, kept unless the incoming VM carries a value
ANNOTATION_VM_FIELDS = (
    "last_migrated_at",
    "previous_cluster",
    "migration_source",
    "migration_target",
)


class DataStore:
    def __init__(
        self,
        db_path: str = const.DEFAULT_DB_PATH,
        seed_path: Optional[str] = None,
        search_paths: Optional[List[str]] = None,
    ):
        self.db_path = db_path or const.DEFAULT_DB_PATH
        parent = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(parent, exist_ok=True)

        self._lock = threading.Lock()  # Guards in-memory state
        self._io_lock = threading.Lock()  # Serializes database access
        self._seq = 0
        self._written: Dict[Tuple[str, str], int] = {}

        self._data = DatacenterCollection()
        self._migrations: Dict[str, Migration] = {}

        self._engine = sqlalchemy.create_engine(
            f"sqlite:///{os.path.abspath(self.db_path)}",
            connect_args={"check_same_thread": False},
        )
        event.listen(self._engine, "connect", _enable_wal)
        metadata.create_all(self._engine)
        logger.debug("Opened store at %s", self.db_path)

        self._load(seed_path, search_paths)

    def close(self):
        with self._io_lock:
            self._engine.dispose()
        logger.debug("Closed store at %s", self.db_path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # Loading and persistence

    def _load(self, seed_path: Optional[str], search_paths: Optional[List[str]]):
        raw = self._read(const.DATACENTERS_BUCKET, const.COLLECTION_KEY)
        if raw is not None:
            self._data = DatacenterCollection.model_validate_json(raw)
            logger.info(
                "Loaded %d datacenters from %s", len(self._data.datacenters), self.db_path
            )
        else:
            with self._lock:
                self._data = load_seed(seed_path, search_paths)
                seq, payload = self._collection_snapshot()
            self._write(const.DATACENTERS_BUCKET, const.COLLECTION_KEY, payload, seq)

        for key, value in self._read_bucket(const.MIGRATIONS_BUCKET):
            try:
                self._migrations[key] = Migration.model_validate_json(value)
            except ValueError as e:
                logger.warning("Failed to load migration %s: %s", key, e)
        logger.debug("Loaded %d migrations", len(self._migrations))

    def _read(self, bucket: str, key: str) -> Optional[str]:
        query = sqlalchemy.select(buckets_table.c.value).where(
            buckets_table.c.bucket == bucket, buckets_table.c.key == key
        )
        with self._io_lock:
            with self._engine.connect() as connection:
                return connection.execute(query).scalar_one_or_none()

    def _read_bucket(self, bucket: str) -> List[Tuple[str, str]]:
        query = (
            sqlalchemy.select(buckets_table.c.key, buckets_table.c.value)
            .where(buckets_table.c.bucket == bucket)
            .order_by(buckets_table.c.key)
        )
        with self._io_lock:
            with self._engine.connect() as connection:
                return [(row.key, row.value) for row in connection.execute(query)]

    def _next_seq(self) -> int:
        # Caller holds self._lock
        self._seq += 1
        return self._seq

    def _collection_snapshot(self) -> Tuple[int, str]:
        # Caller holds self._lock
        return self._next_seq(), self._data.to_json()

    def _write_statement(self, bucket: str, key: str, payload: Optional[str]):
        if payload is None:
            return buckets_table.delete().where(
                buckets_table.c.bucket == bucket, buckets_table.c.key == key
            )
        statement = sqlite_insert(buckets_table).values(bucket=bucket, key=key, value=payload)
        return statement.on_conflict_do_update(
            index_elements=[buckets_table.c.bucket, buckets_table.c.key],
            set_={"value": statement.excluded.value},
        )

    def _write(self, bucket: str, key: str, payload: Optional[str], seq: int):
        """Persist one key. A None payload deletes it. Must not be called with self._lock held."""
        start = time.monotonic()
        with self._io_lock:
            if self._written.get((bucket, key), 0) > seq:
                logger.debug("Skipping stale write %s/%s seq=%d", bucket, key, seq)
                return
            try:
                with self._engine.begin() as connection:
                    connection.execute(self._write_statement(bucket, key, payload))
                self._written[(bucket, key)] = seq
            except SQLAlchemyError as e:
                logger.error("Failed to persist %s/%s: %s", bucket, key, e)
                return
        logger.debug(
            "Persisted %s/%s seq=%d size=%d duration=%.3fs",
            bucket,
            key,
            seq,
            len(payload or ""),
            time.monotonic() - start,
        )

    def _persist_collection(self, seq: int, payload: str):
        self._write(const.DATACENTERS_BUCKET, const.COLLECTION_KEY, payload, seq)

    # Internal lookups, caller holds self._lock

    def _datacenter(self, datacenter_id: str) -> Datacenter:
        dc = self._data.find_datacenter(datacenter_id)
        if dc is None:
            raise NotFoundError("datacenter", datacenter_id)
        return dc

    def _vm_index(self, dc: Datacenter, vm_id: str) -> int:
        for i, vm in enumerate(dc.vms):
            if vm.id == vm_id:
                return i
        raise NotFoundError("vm", vm_id, f"datacenter {dc.id}")

    def _locate_vm(self, vm_id: str) -> Optional[Datacenter]:
        for dc in self._data.datacenters:
            if dc.find_vm(vm_id) is not None:
                return dc
        return None

    @staticmethod
    def _validated_vm(vm) -> VM:
        """Re-validate a caller supplied VM so bad values never reach a snapshot."""
        try:
            if isinstance(vm, VM):
                return VM.model_validate(vm.model_dump())
            return VM.model_validate(vm)
        except ValidationError as e:
            raise InvalidOperationError(f"invalid vm: {e}") from e

    # Datacenter collection operations

    def get_datacenters(self) -> DatacenterCollection:
        """Return an independent deep copy of the whole collection."""
        with self._lock:
            return self._data.model_copy(deep=True)

    def get_datacenter(self, datacenter_id: str) -> Datacenter:
        with self._lock:
            return self._datacenter(datacenter_id).model_copy(deep=True)

    def find_vm(self, vm_id: str) -> Optional[Tuple[str, VM]]:
        """Return (datacenter id, VM copy) for the datacenter currently holding the VM."""
        with self._lock:
            dc = self._locate_vm(vm_id)
            if dc is None:
                return None
            return dc.id, dc.find_vm(vm_id).model_copy(deep=True)

    def initialize_from_watcher_config(self, config: DatacenterConfig) -> DatacenterCollection:
        """
        Rebuild the datacenter list from the watcher config. VMs already stored for a
        datacenter that is still configured are carried over, the rest get filled in by the watchers.
        """
        collection = config.to_collection()
        with self._lock:
            for dc in collection.datacenters:
                existing = self._data.find_datacenter(dc.id)
                if existing is not None:
                    dc.vms = existing.vms
            self._data = collection
            seq, payload = self._collection_snapshot()
            result = self._data.model_copy(deep=True)
        self._persist_collection(seq, payload)
        logger.info("Initialized store from watcher config with %d datacenters", len(collection.datacenters))
        return result

    def update_datacenter(
        self,
        datacenter_id: str,
        name: Optional[str] = None,
        location: Optional[str] = None,
        coordinates: Optional[List[float]] = None,
    ) -> Datacenter:
        if coordinates is not None and (
            not isinstance(coordinates, (list, tuple)) or len(coordinates) != 2
        ):
            raise InvalidOperationError(f"coordinates must be [lat, lon], got {coordinates}")
        changes = {"name": name, "location": location, "coordinates": coordinates}
        changes = {field: value for field, value in changes.items() if value is not None}
        with self._lock:
            dc = self._datacenter(datacenter_id)
            try:
                candidate = Datacenter.model_validate({**dc.model_dump(exclude={"vms"}), **changes})
            except ValidationError as e:
                raise InvalidOperationError(f"invalid update for datacenter {datacenter_id}: {e}") from e
            for field in changes:
                setattr(dc, field, getattr(candidate, field))
            result = dc.model_copy(deep=True)
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        return result

    def add_vm(self, datacenter_id: str, vm: VM) -> VM:
        vm = self._validated_vm(vm)
        with self._lock:
            dc = self._datacenter(datacenter_id)
            holder = self._locate_vm(vm.id)
            if holder is not None:
                raise InvalidOperationError(f"vm {vm.id} already exists in datacenter {holder.id}")
            stored = vm.model_copy(deep=True)
            dc.vms.append(stored)
            result = stored.model_copy(deep=True)
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        logger.debug("Added VM %s to datacenter %s", vm.id, datacenter_id)
        return result

    def remove_vm(self, datacenter_id: str, vm_id: str, cluster: Optional[str] = None):
        """
        Remove a VM from a datacenter. When `cluster` is given the VM is only removed
        if the stored record still belongs to that cluster, otherwise NotFoundError is raised.
        """
        with self._lock:
            dc = self._datacenter(datacenter_id)
            index = self._vm_index(dc, vm_id)
            if cluster is not None and dc.vms[index].cluster != cluster:
                raise NotFoundError("vm", vm_id, f"cluster {cluster}")
            del dc.vms[index]
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        logger.debug("Removed VM %s from datacenter %s", vm_id, datacenter_id)

    def update_vm(
        self,
        datacenter_id: str,
        vm_id: str,
        name: Optional[str] = None,
        status: Optional[str] = None,
        cpu: Optional[int] = None,
        memory: Optional[int] = None,
        disk: Optional[int] = None,
        cluster: Optional[str] = None,
        migration_status: Optional[str] = None,
        previous_cluster: Optional[str] = None,
        last_migrated_at: Optional[datetime.datetime] = None,
        migration_source: Optional[str] = None,
        migration_target: Optional[str] = None,
    ) -> VM:
        """Partial update, only the arguments that are not None are applied."""
        updates = {
            "name": name,
            "status": status,
            "cpu": cpu,
            "memory": memory,
            "disk": disk,
            "cluster": cluster,
            "migration_status": migration_status,
            "previous_cluster": previous_cluster,
            "last_migrated_at": last_migrated_at,
            "migration_source": migration_source,
            "migration_target": migration_target,
        }
        updates = {field: value for field, value in updates.items() if value is not None}
        with self._lock:
            dc = self._datacenter(datacenter_id)
            index = self._vm_index(dc, vm_id)
            try:
                vm = VM.model_validate({**dc.vms[index].model_dump(), **updates})
            except ValidationError as e:
                raise InvalidOperationError(f"invalid update for vm {vm_id}: {e}") from e
            dc.vms[index] = vm
            result = vm.model_copy(deep=True)
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        return result

    def update_vm_complete(self, datacenter_id: str, vm_id: str, updated: VM) -> VM:
        """
        Overwrite every live field of a stored VM with the freshly observed model.
        Migration annotations survive unless the incoming model carries its own, and a
        completed migration status is only replaced by an explicit new status.
        """
        updated = self._validated_vm(updated)
        with self._lock:
            dc = self._datacenter(datacenter_id)
            vm = dc.vms[self._vm_index(dc, vm_id)]
            for field in LIVE_VM_FIELDS:
                setattr(vm, field, getattr(updated, field))
            for field in ANNOTATION_VM_FIELDS:
                value = getattr(updated, field)
                if value is not None:
                    setattr(vm, field, value)
            if updated.migration_status is not None or vm.migration_status != "completed":
                vm.migration_status = updated.migration_status
            result = vm.model_copy(deep=True)
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        return result

    def migrate_vm(self, vm_id: str, from_datacenter: str, to_datacenter: str) -> VM:
        """
        Move a VM between datacenters in one step: it is never visible in both lists or in neither.
        """
        if from_datacenter == to_datacenter:
            raise InvalidOperationError(
                f"vm {vm_id} is already in datacenter {to_datacenter}"
            )
        with self._lock:
            source = self._datacenter(from_datacenter)
            # Resolve everything before touching the source list
            target = self._datacenter(to_datacenter)
            index = self._vm_index(source, vm_id)
            vm = source.vms.pop(index)
            vm.last_migrated_at = utcnow()
            target.vms.append(vm)
            result = vm.model_copy(deep=True)
            seq, payload = self._collection_snapshot()
        self._persist_collection(seq, payload)
        logger.info("Migrated VM %s from datacenter %s to %s", vm_id, from_datacenter, to_datacenter)
        return result

    # Migration table operations

    @staticmethod
    def _merge_migration(existing: Optional[Migration], incoming: Migration) -> Migration:
        merged = incoming.model_copy(deep=True)
        transitions = list(merged.phase_transitions)
        if existing is not None:
            merged.created_at = existing.created_at
            merged.completed = existing.completed or incoming.completed
            if merged.start_time is None:
                merged.start_time = existing.start_time
            if merged.end_time is None:
                merged.end_time = existing.end_time
            seen = {(t.phase, t.timestamp) for t in transitions}
            for transition in existing.phase_transitions:
                if (transition.phase, transition.timestamp) not in seen:
                    transitions.append(transition.model_copy())
        merged.phase_transitions = sorted(transitions, key=lambda t: t.timestamp)
        return merged

    def _upsert_migration(self, migration: Migration, touch: bool) -> Migration:
        try:
            migration = Migration.model_validate(migration.model_dump())
        except (ValidationError, AttributeError) as e:
            raise InvalidOperationError(f"invalid migration: {e}") from e
        with self._lock:
            existing = self._migrations.get(migration.id)
            merged = self._merge_migration(existing, migration)
            if touch:
                merged.updated_at = utcnow()
            self._migrations[merged.id] = merged
            result = merged.model_copy(deep=True)
            seq = self._next_seq()
            payload = merged.to_json()
        self._write(const.MIGRATIONS_BUCKET, migration.id, payload, seq)
        return result

    def add_migration(self, migration: Migration) -> Migration:
        return self._upsert_migration(migration, touch=False)

    def update_migration(self, migration: Migration) -> Migration:
        return self._upsert_migration(migration, touch=True)

    def get_migration(self, migration_id: str) -> Migration:
        with self._lock:
            migration = self._migrations.get(migration_id)
            if migration is None:
                raise NotFoundError("migration", migration_id)
            return migration.model_copy(deep=True)

    def _select_migrations(self, predicate=None) -> List[Migration]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for _, m in sorted(self._migrations.items())
                if predicate is None or predicate(m)
            ]

    def get_all_migrations(self) -> List[Migration]:
        return self._select_migrations()

    def get_active_migrations(self) -> List[Migration]:
        return self._select_migrations(lambda m: not m.completed)

    def get_migrations_by_datacenter(self, datacenter_id: str) -> List[Migration]:
        return self._select_migrations(lambda m: m.datacenter_id == datacenter_id)

    def get_migrations_by_vm(self, vm_name: str) -> List[Migration]:
        return self._select_migrations(lambda m: m.vm_name == vm_name or m.vm_id == vm_name)

    def get_migrations_by_direction(self, direction: Union[MigrationDirection, str]) -> List[Migration]:
        try:
            wanted = MigrationDirection(direction)
        except ValueError:
            raise InvalidOperationError(f"unknown migration direction {direction}")
        return self._select_migrations(lambda m: m.direction == wanted)

    def remove_migration(self, migration_id: str):
        with self._lock:
            if migration_id not in self._migrations:
                raise NotFoundError("migration", migration_id)
            del self._migrations[migration_id]
            seq = self._next_seq()
        self._write(const.MIGRATIONS_BUCKET, migration_id, None, seq)
