'''
Seed data used when the store is opened on an empty database.

Lookup order:
1. Seed document passed explicitly.
2. A `datacenters.{json,yaml,yml}` file in one of the search directories.
3. The embedded sample collection below.
'''

import os
from typing import List, Optional

import fleet_watcher.constants as const
from fleet_watcher.models.inventory import Datacenter, DatacenterCollection, VM
from fleet_watcher.utils.fs import read_collection_from_file
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)


def sample_collection() -> DatacenterCollection:
    return DatacenterCollection(
        datacenters=[
            Datacenter(
                id="dc-stockholm-north",
                name="Stockholm North DC",
                location="Kista, Stockholm",
                coordinates=[59.41966666666667, 17.94661111111111],
                vms=[
                    VM(id="vm-001", name="web-server-01", status="running", cpu=4, memory=8192, disk=100),
                    VM(id="vm-002", name="database-01", status="running", cpu=8, memory=16384, disk=500),
                    VM(id="vm-003", name="cache-01", status="running", cpu=2, memory=4096, disk=50),
                ],
            ),
            Datacenter(
                id="dc-solna",
                name="Stockholm Solna DC",
                location="Järvastaden, Solna",
                coordinates=[59.38162465568805, 17.98030981149373],
                vms=[
                    VM(id="vm-004", name="web-server-02", status="running", cpu=4, memory=8192, disk=100),
                    VM(id="vm-005", name="backup-01", status="stopped", cpu=2, memory=4096, disk=1000),
                ],
            ),
        ]
    )


def find_default_seed(search_paths: Optional[List[str]] = None) -> Optional[str]:
    for directory in search_paths if search_paths is not None else const.SEED_SEARCH_PATHS:
        for ext in const.SEED_EXTENSIONS:
            candidate = os.path.join(directory, f"{const.SEED_CONFIG_NAME}.{ext}")
            if os.path.isfile(candidate):
                return candidate
    return None


def load_seed(seed_path: Optional[str] = None, search_paths: Optional[List[str]] = None) -> DatacenterCollection:
    if seed_path:
        try:
            collection = read_collection_from_file(seed_path)
            logger.info("Seeding store from %s", seed_path)
            return collection
        except Exception as e:
            logger.warning("Unable to read seed document %s: %s", seed_path, e)

    default_seed = find_default_seed(search_paths)
    if default_seed is not None:
        try:
            collection = read_collection_from_file(default_seed)
            logger.info("Seeding store from default seed %s", default_seed)
            return collection
        except Exception as e:
            logger.warning("Unable to read default seed %s: %s", default_seed, e)
    else:
        logger.debug("No default seed named %s found", const.SEED_CONFIG_NAME)

    logger.info("No seed document found, initializing with sample data")
    return sample_collection()
