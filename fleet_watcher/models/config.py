from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
import fleet_watcher.constants as const
from fleet_watcher.models.inventory import Datacenter, DatacenterCollection


class ClusterInfo(BaseModel):
    name: str
    kubeconfig: str = Field(
        validation_alias=AliasChoices("kubeconfig", "credentialRef", "credential_ref")
    )  # Path to cluster kubeconfig


class DatacenterDefinition(BaseModel):
    id: str
    name: str
    location: str = ""
    coordinates: List[float] = []  # [lat, lon]
    clusters: List[ClusterInfo] = []

    @field_validator("coordinates", mode="after")
    @classmethod
    def is_lat_lon(cls, value: List[float]) -> List[float]:
        if len(value) not in (0, 2):
            raise ValueError(f"coordinates must be [lat, lon], got {value}")
        return value


class ClusterConfig(BaseModel):
    """Flattened view of one cluster, carrying the datacenter that owns it."""

    model_config = ConfigDict(frozen=True)

    name: str
    kubeconfig: str
    datacenter_id: str


class WatcherSettings(BaseModel):
    migration_timeout: float = const.MIGRATION_TIMEOUT  # Seconds before a vanished VM counts as deleted
    cleanup_interval: float = const.CLEANUP_INTERVAL  # Seconds between pending migration sweeps
    watch_restart_delay: float = const.WATCH_RESTART_DELAY  # Seconds to wait after a stream closes
    watch_retry_delay: float = const.WATCH_RETRY_DELAY  # Seconds to wait after a stream fails to open
    watch_timeout_seconds: int = const.WATCH_TIMEOUT_SECONDS  # Server side timeout of one watch request


class DatacenterConfig(BaseModel):
    datacenters: List[DatacenterDefinition] = []
    watcher: WatcherSettings = WatcherSettings()

    # Directory the config file was read from, used to resolve relative kubeconfig paths
    base_dir: Optional[str] = Field(default=None, exclude=True)

    def get_clusters(self) -> List[ClusterConfig]:
        """Extract all cluster configurations, each tagged with its datacenter."""
        clusters = []
        for datacenter in self.datacenters:
            for cluster in datacenter.clusters:
                clusters.append(
                    ClusterConfig(
                        name=cluster.name,
                        kubeconfig=cluster.kubeconfig,
                        datacenter_id=datacenter.id,
                    )
                )
        return clusters

    def to_collection(self) -> DatacenterCollection:
        """Datacenter structure without VMs, they get populated by the watchers."""
        return DatacenterCollection(
            datacenters=[
                Datacenter(
                    id=dc.id,
                    name=dc.name,
                    location=dc.location,
                    coordinates=list(dc.coordinates),
                    clusters=[c.name for c in dc.clusters],
                    vms=[],
                )
                for dc in self.datacenters
            ]
        )
