import datetime
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class VMStatus(str, Enum):
    stopped = "stopped"
    starting = "starting"
    running = "running"
    migrating = "migrating"
    waiting_for_receiver = "waitingforreceiver"
    unknown = "unknown"


@dataclass(frozen=True)
class UnrecognizedStatus:
    """A printable status KubeVirt reported that has no VMStatus member."""

    raw: str

    @property
    def value(self) -> str:
        return self.raw.lower()


# KubeVirt printableStatus -> internal status
PRINTABLE_STATUS = {
    "Stopped": VMStatus.stopped,
    "Starting": VMStatus.starting,
    "Running": VMStatus.running,
    "Migrating": VMStatus.migrating,
    "WaitingForReceiver": VMStatus.waiting_for_receiver,
}


def classify_printable_status(raw: Optional[str]) -> Union[VMStatus, UnrecognizedStatus]:
    if not raw:
        return VMStatus.unknown
    if raw in PRINTABLE_STATUS:
        return PRINTABLE_STATUS[raw]
    return UnrecognizedStatus(raw=raw)


class VM(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str
    name: str
    status: str = VMStatus.unknown.value
    phase: str = ""
    cpu: int = 0
    memory: int = 0  # MB
    disk: int = 0  # GB
    cluster: str = ""
    namespace: str = ""
    node_name: str = Field(default="", alias="nodeName")
    ip: str = ""
    ready: bool = False
    age: str = ""

    # Migration annotations, set by the migration detector or MigrateVM
    last_migrated_at: Optional[datetime.datetime] = Field(default=None, alias="_lastMigratedAt")
    previous_cluster: Optional[str] = Field(default=None, alias="previousCluster")
    migration_status: Optional[str] = Field(default=None, alias="migrationStatus")  # "migrating", "completed"
    migration_source: Optional[str] = Field(default=None, alias="migrationSource")
    migration_target: Optional[str] = Field(default=None, alias="migrationTarget")


class Datacenter(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    location: str = ""
    coordinates: List[float] = []
    clusters: List[str] = []
    vms: List[VM] = []

    def find_vm(self, vm_id: str) -> Optional[VM]:
        for vm in self.vms:
            if vm.id == vm_id:
                return vm
        return None


class DatacenterCollection(BaseModel):
    datacenters: List[Datacenter] = []

    def find_datacenter(self, datacenter_id: str) -> Optional[Datacenter]:
        for dc in self.datacenters:
            if dc.id == datacenter_id:
                return dc
        return None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
