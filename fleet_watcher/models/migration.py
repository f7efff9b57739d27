import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from fleet_watcher.models.inventory import VM
from fleet_watcher.utils import utcnow


class MigrationDirection(str, Enum):
    incoming = "incoming"  # This cluster receives the VM
    outgoing = "outgoing"  # This cluster sends the VM
    unknown = "unknown"


TERMINAL_PHASES = ("Succeeded", "Failed")


class MigrationTransition(BaseModel):
    phase: str
    timestamp: datetime.datetime


class Migration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str  # Migration resource name
    uid: str = ""  # Migration resource uid, distinguishes re-created resources
    vm_id: str = Field(default="", alias="vmId")
    vm_name: str = Field(default="", alias="vmName")
    namespace: str = ""
    cluster: str = ""  # Cluster the resource was observed in
    datacenter_id: str = Field(default="", alias="datacenterId")
    phase: str = ""
    direction: MigrationDirection = MigrationDirection.unknown
    source_cluster: str = Field(default="", alias="sourceCluster")
    target_cluster: str = Field(default="", alias="targetCluster")
    source_node: str = Field(default="", alias="sourceNode")
    target_node: str = Field(default="", alias="targetNode")
    source_pod: str = Field(default="", alias="sourcePod")
    target_pod: str = Field(default="", alias="targetPod")
    migration_correlation_id: str = Field(default="", alias="migrationId")
    send_to_url: str = Field(default="", alias="sendToUrl")  # spec.sendTo.connectURL
    receive_from_id: str = Field(default="", alias="receiveFromId")  # spec.receive.migrationID
    start_time: Optional[datetime.datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime.datetime] = Field(default=None, alias="endTime")
    completed: bool = False
    created_at: datetime.datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime.datetime = Field(default_factory=utcnow, alias="updatedAt")
    phase_transitions: List[MigrationTransition] = Field(default=[], alias="phaseTransitions")
    labels: Dict[str, str] = {}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class MigrationEvent(BaseModel):
    """A migration this system concluded from cross-cluster correlation."""

    vm: VM
    from_cluster: str
    to_cluster: str
    from_datacenter: str
    to_datacenter: str
    migrated_at: datetime.datetime
    event_type: str = "cluster_migration"


class PendingMigration(BaseModel):
    vm: VM
    from_cluster: str
    last_seen_at: datetime.datetime
    datacenter_id: str
