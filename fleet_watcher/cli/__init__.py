from fleet_watcher.cli.cmd import main

__all__ = ["main"]
