import os
import time

import click
from pydantic import ValidationError

from fleet_watcher.utils.logger import init_logger, get_logger
import fleet_watcher.constants as const
from fleet_watcher.models.custom_errors import ConfigurationError, InvalidOperationError
from fleet_watcher.store.datastore import DataStore
from fleet_watcher.utils.fs import dump_data, read_config_from_file
from fleet_watcher.watcher.coordinator import WatcherCoordinator
from fleet_watcher.watcher.events import EventHub


@click.group(context_settings={"show_default": True})
def main():
    pass


@main.command(help="Watch all configured clusters and keep the store up to date")
@click.option(
    "--config",
    "-c",
    help="Path to datacenter config file.",
    default=os.getenv("FLEET_WATCHER_CONFIG", None),
)
@click.option(
    "--db",
    "-d",
    help="Path to the store database file.",
    default=os.getenv("FLEET_WATCHER_DB", const.DEFAULT_DB_PATH),
)
@click.option("--seed", "-s", help="Seed document used when the database is empty.", default=None)
@click.option("--output", "-o", help="Directory to write watcher.log to.", default=None)
@click.option("-v", "--verbose", count=True, help="Increase verbosity of output.")
def watch(
    config: str,
    db: str = const.DEFAULT_DB_PATH,
    seed: str = None,
    output: str = None,
    verbose: int = 0,
):
    init_logger(output, verbose >= 1)
    logger = get_logger(__name__)

    if config == "" or config is None:
        logger.error("Config file invalid.")
        exit(1)
    if not os.path.exists(config):
        logger.error("Config file not found.")
        exit(1)

    try:
        parsed_config = read_config_from_file(config)
        logger.info("Initialized config: %s", config)
    except (ConfigurationError, ValidationError) as err:
        logger.error("Unable to parse config file: %s", err)
        exit(1)

    store = DataStore(db, seed_path=seed)
    store.initialize_from_watcher_config(parsed_config)

    coordinator = WatcherCoordinator(store, config=parsed_config, hub=EventHub())
    try:
        coordinator.start()
        while coordinator.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except ConfigurationError as e:
        logger.error("%s", e)
        exit(1)
    finally:
        coordinator.stop()
        store.close()


@main.command(help="Print the contents of the store")
@click.option(
    "--db",
    "-d",
    help="Path to the store database file.",
    default=os.getenv("FLEET_WATCHER_DB", const.DEFAULT_DB_PATH),
)
@click.option(
    "--what",
    "-w",
    type=click.Choice(["datacenters", "migrations", "active", "incoming", "outgoing"], case_sensitive=False),
    default="datacenters",
    help="Which projection to print.",
)
@click.option("--datacenter", help="Only migrations of this datacenter.", default=None)
@click.option(
    "--format",
    "-f",
    help="Output format.",
    type=click.Choice(["json", "yaml"], case_sensitive=False),
    default="json",
)
def show(db: str, what: str, datacenter: str = None, format: str = "json"):
    init_logger(None, False)
    logger = get_logger(__name__)

    with DataStore(db) as store:
        what = what.lower()
        if what == "datacenters":
            data = store.get_datacenters().model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            try:
                if what == "migrations" and datacenter:
                    migrations = store.get_migrations_by_datacenter(datacenter)
                elif what == "migrations":
                    migrations = store.get_all_migrations()
                elif what == "active":
                    migrations = store.get_active_migrations()
                else:
                    migrations = store.get_migrations_by_direction(what)
            except InvalidOperationError as e:
                logger.error("%s", e)
                exit(1)
            data = [m.model_dump(mode="json", by_alias=True) for m in migrations]

    click.echo(dump_data(data, format.lower()))
