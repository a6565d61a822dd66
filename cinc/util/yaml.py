"""Reading and writing of the YAML files cinc uses (manifests, backends)"""

import yaml

from cinc.util.log import logger
from cinc.util.system import path_exists, write_file_atomically


def read_yaml_from_file(filename: str) -> dict:
    """Read filename and return parsed yaml, {} if it doesn't exist.

    Raises:
        yaml.YAMLError: if the file isn't valid YAML
    """
    if not path_exists(filename):
        return {}
    with open(filename, "r", encoding="utf-8") as yaml_file:
        try:
            return yaml.safe_load(yaml_file) or {}
        except yaml.YAMLError as ex:
            logger.error("error parsing file %s: %s", filename, ex)
            raise


def write_yaml_to_file(config: dict, filepath: str) -> None:
    yaml_config = yaml.safe_dump(config, default_flow_style=False)
    write_file_atomically(filepath, yaml_config.encode("utf-8"))
