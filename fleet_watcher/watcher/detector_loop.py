import queue
import threading
from collections import deque
from typing import Deque, List, Optional

from fleet_watcher.models.custom_errors import NotFoundError
from fleet_watcher.models.migration import MigrationEvent
from fleet_watcher.store.datastore import DataStore
from fleet_watcher.utils.logger import get_logger
from fleet_watcher.watcher.events import EventHub
from fleet_watcher.watcher.migration_detector import (
    CleanupTick,
    DetectorMessage,
    MigrationDetector,
)

logger = get_logger(__name__)

# How often the consumer checks for cancellation while the queue is idle
POLL_INTERVAL = 0.5

# Number of detected migrations kept for inspection
RECENT_EVENTS = 100


class MigrationDetectorLoop:
    """
    Single consumer for detector messages published by every cluster watcher.
    Detected migrations are written to the store and broadcast on the event hub.
    """

    def __init__(
        self,
        detector: MigrationDetector,
        store: DataStore,
        hub: Optional[EventHub] = None,
    ):
        self.detector = detector
        self.store = store
        self.hub = hub
        self.events: "queue.Queue[DetectorMessage]" = queue.Queue()
        self.recent: Deque[MigrationEvent] = deque(maxlen=RECENT_EVENTS)

    def publish(self, message: DetectorMessage):
        self.events.put(message)

    def request_cleanup(self):
        self.events.put(CleanupTick())

    def run(self, stop_event: threading.Event):
        logger.debug("Migration detector loop started")
        while not stop_event.is_set():
            try:
                message = self.events.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            self.process(message)
        logger.debug("Migration detector loop stopped")

    def drain(self) -> List[MigrationEvent]:
        """Process every queued message on the calling thread."""
        detected = []
        while True:
            try:
                message = self.events.get_nowait()
            except queue.Empty:
                return detected
            event = self.process(message)
            if event is not None:
                detected.append(event)

    def process(self, message: DetectorMessage) -> Optional[MigrationEvent]:
        try:
            event = self.detector.handle(message)
        except Exception as e:
            logger.error("Failed to handle detector message %r: %s", message, e)
            return None
        if event is not None:
            self.apply(event)
        return event

    def apply(self, event: MigrationEvent):
        self.recent.append(event)
        try:
            self.store.update_vm(
                event.to_datacenter,
                event.vm.id,
                migration_status=event.vm.migration_status,
                previous_cluster=event.from_cluster,
                last_migrated_at=event.migrated_at,
                migration_source=event.from_cluster,
                migration_target=event.to_cluster,
            )
        except NotFoundError as e:
            logger.debug("Unable to annotate migrated VM %s: %s", event.vm.id, e)
        if self.hub is not None:
            self.hub.broadcast_event("vm_migrated", event)
