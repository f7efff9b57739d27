import json
import os
import yaml
from typing import Dict, List, Union

from fleet_watcher.models.config import DatacenterConfig
from fleet_watcher.models.custom_errors import ConfigurationError
from fleet_watcher.models.inventory import DatacenterCollection
from fleet_watcher.utils.logger import get_logger

logger = get_logger(__name__)


def read_config_from_file(file_path: str) -> DatacenterConfig:
    """Read datacenter config file from local
    Args:
        file_path: Path to config file
    Returns:
        DatacenterConfig: Config object, relative kubeconfig paths resolve against its directory
    """
    if not file_path or not os.path.exists(file_path):
        raise ConfigurationError(f"Config file {file_path} not found")
    with open(file_path, "r", encoding="utf-8") as stream:
        config = yaml.safe_load(stream) or {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {file_path} is not a mapping")
    parsed = DatacenterConfig(**config)
    parsed.base_dir = os.path.dirname(os.path.abspath(file_path))
    return parsed


def resolve_kubeconfig_path(kubeconfig: str, base_dir: str = None) -> str:
    if os.path.isabs(kubeconfig) or base_dir is None:
        return kubeconfig
    return os.path.join(base_dir, kubeconfig)


def read_collection_from_file(file_path: str) -> DatacenterCollection:
    """
    Read a datacenter collection seed document. JSON and YAML are both accepted.
    """
    with open(file_path, "r", encoding="utf-8") as stream:
        data = yaml.safe_load(stream) or {}
    return DatacenterCollection.model_validate(data)


def dump_data(data: Union[Dict, List], format: str) -> str:
    if format == 'yaml':
        return yaml.safe_dump(data, sort_keys=False)
    elif format == 'json':
        return json.dumps(data, indent=4)
    else:
        raise ValueError(f"Unsupported format: {format}")
