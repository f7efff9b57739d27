import threading
from typing import Callable, Dict, List, Optional

from fleet_watcher.models.config import ClusterConfig, DatacenterConfig
from fleet_watcher.models.custom_errors import ConfigurationError
from fleet_watcher.store.datastore import DataStore
from fleet_watcher.utils.fs import read_config_from_file, resolve_kubeconfig_path
from fleet_watcher.utils.logger import get_logger
from fleet_watcher.utils.timer import CancellableTimer
from fleet_watcher.watcher.cluster_watcher import ClusterWatcher
from fleet_watcher.watcher.detector_loop import MigrationDetectorLoop
from fleet_watcher.watcher.events import EventHub
from fleet_watcher.watcher.migration_detector import MigrationDetector

logger = get_logger(__name__)


class WatcherCoordinator:
    """
    Starts and stops one ClusterWatcher per configured cluster together with the
    migration detector loop and its periodic cleanup. Holds no business logic.
    """

    def __init__(
        self,
        store: DataStore,
        config_path: Optional[str] = None,
        config: Optional[DatacenterConfig] = None,
        hub: Optional[EventHub] = None,
        watcher_factory: Callable[..., ClusterWatcher] = ClusterWatcher,
    ):
        if config is None and config_path is None:
            raise ConfigurationError("Either config or config_path is required")
        self.store = store
        self.config_path = config_path
        self.config = config
        self.hub = hub
        self.watcher_factory = watcher_factory

        self.watchers: Dict[str, ClusterWatcher] = {}
        self.detector_loop: Optional[MigrationDetectorLoop] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    def _spawn(self, target, name: str, *args):
        t = threading.Thread(target=target, args=args, name=name, daemon=True)
        t.start()
        self._threads.append(t)
        return t

    def start(self):
        if self.config is None:
            self.config = read_config_from_file(self.config_path)

        clusters = self.config.get_clusters()
        if len(clusters) == 0:
            raise ConfigurationError("No clusters found in configuration")

        settings = self.config.watcher
        detector = MigrationDetector(migration_timeout=settings.migration_timeout)
        self.detector_loop = MigrationDetectorLoop(detector, self.store, self.hub)

        logger.info("Starting VM watcher for %d clusters", len(clusters))

        with self._lock:
            self._spawn(self.detector_loop.run, "migration-detector", self._stop_event)
            self._spawn(self._cleanup_loop, "migration-cleanup", settings.cleanup_interval)

            for cluster in clusters:
                cluster_watcher = self._create_cluster_watcher(cluster)
                if cluster_watcher is None:
                    continue
                self.watchers[cluster.name] = cluster_watcher
                self._spawn(self._run_cluster_watcher, f"{cluster.name}-start", cluster_watcher)

        logger.info("Started watching %d of %d clusters", len(self.watchers), len(clusters))

    def _create_cluster_watcher(self, cluster: ClusterConfig) -> Optional[ClusterWatcher]:
        kubeconfig = resolve_kubeconfig_path(cluster.kubeconfig, self.config.base_dir)
        try:
            return self.watcher_factory(
                cluster,
                self.store,
                detector_loop=self.detector_loop,
                hub=self.hub,
                settings=self.config.watcher,
                kubeconfig_path=kubeconfig,
            )
        except Exception as e:
            logger.error("Failed to create watcher for cluster %s: %s", cluster.name, e)
            return None

    def _run_cluster_watcher(self, cluster_watcher: ClusterWatcher):
        try:
            cluster_watcher.start()
        except Exception as e:
            logger.error("Failed to start watching cluster %s: %s", cluster_watcher.name, e)

    def _cleanup_loop(self, interval: float):
        timer = CancellableTimer(self._stop_event)
        while not timer.wait(interval):
            self.detector_loop.request_cleanup()

    def stop(self, timeout: float = 5.0):
        logger.info("Stopping VM watcher")
        self._stop_event.set()

        with self._lock:
            for cluster_watcher in self.watchers.values():
                cluster_watcher.stop(timeout=timeout)
            for t in self._threads:
                t.join(timeout=timeout)
            self.watchers = {}
            self._threads = []
        logger.info("VM watcher stopped")

    def is_running(self) -> bool:
        return not self._stop_event.is_set() and len(self._threads) > 0
