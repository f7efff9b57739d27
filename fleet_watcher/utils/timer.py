import threading
from typing import Optional


class CancellableTimer:
    """
    Sleep that wakes up early when the owning scope is cancelled.
    Watch loops and the cleanup sweep wait through this instead of time.sleep.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self.stop_event = stop_event or threading.Event()

    def wait(self, seconds: float) -> bool:
        """Wait up to `seconds`. Returns True if the scope was cancelled."""
        return self.stop_event.wait(seconds)

    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self):
        self.stop_event.set()
