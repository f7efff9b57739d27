'''
Small in-process pub/sub hub used to broadcast watcher events to an outer transport
(e.g. a server-sent events endpoint). Single node only, nothing is persisted.
'''

import json
import queue
import threading
from typing import Any, Set

from pydantic import BaseModel

import fleet_watcher.constants as const
from fleet_watcher.utils import utcnow
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)


class EventHub:
    def __init__(self, buffer_size: int = const.EVENT_HUB_BUFFER):
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._clients: Set[queue.Queue] = set()

    def register(self) -> queue.Queue:
        """
        Add a subscriber. The returned queue receives JSON encoded payloads and a final
        None once the subscriber is unregistered. Callers must call unregister when done.
        """
        client = queue.Queue(maxsize=self.buffer_size)
        with self._lock:
            self._clients.add(client)
        return client

    def unregister(self, client: queue.Queue):
        with self._lock:
            if client not in self._clients:
                return
            self._clients.discard(client)
        # Make room for the closing sentinel
        while True:
            try:
                client.put_nowait(None)
                break
            except queue.Full:
                try:
                    client.get_nowait()
                except queue.Empty:
                    pass

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def broadcast(self, message: str):
        """Non-blocking send to every subscriber, slow subscribers miss the message."""
        with self._lock:
            for client in self._clients:
                try:
                    client.put_nowait(message)
                except queue.Full:
                    logger.debug("Dropping event for slow subscriber")

    def broadcast_event(self, event_type: str, payload: Any):
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json", by_alias=True)
        envelope = {
            "type": event_type,
            "payload": payload,
            "timestamp": utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        try:
            message = json.dumps(envelope)
        except (TypeError, ValueError) as e:
            logger.warning("Unable to encode %s event: %s", event_type, e)
            return
        self.broadcast(message)
