import logging
import os
from typing import Optional

_LOGGER_INITIALIZED = False

BASE_LOGGER = "fleet-watcher"


def init_logger(output_dir: Optional[str] = None, verbose: bool = False):
    """Initialize global logger configuration once."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    log_level = logging.DEBUG if verbose else logging.INFO

    parent = logging.getLogger(BASE_LOGGER)

    # Kubernetes client and urllib3 are noisy on reconnects
    logging.getLogger().setLevel(logging.CRITICAL)

    if parent.handlers:
        _LOGGER_INITIALIZED = True
        return

    # Handlers live on the parent, children propagate to it
    parent.setLevel(logging.DEBUG)
    parent.propagate = False

    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    parent.addHandler(console)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        file_path = os.path.join(output_dir, "watcher.log")
        fh = logging.FileHandler(file_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] [%(threadName)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        parent.addHandler(fh)

    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a named logger under the 'fleet-watcher' namespace so it inherits parent's handlers.
    Example: get_logger(__name__) -> logger name "fleet-watcher.fleet_watcher.store.datastore"
    """
    if name and not name.startswith(BASE_LOGGER):
        fullname = f"{BASE_LOGGER}.{name}"
    else:
        fullname = name or BASE_LOGGER
    return logging.getLogger(fullname)

