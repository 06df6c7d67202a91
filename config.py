import copy
import json
import os

import structlog

log = structlog.get_logger(__name__)

CONFIG_PATH = 'election_config.json'
DEFAULTS = {
    "chain_path": "blockchain_data.json",
    "default_candidates": ["Alice", "Bob", "Charlie"],
    "log_environment": "development",
}


def load_config(path=CONFIG_PATH):
    data = copy.deepcopy(DEFAULTS)
    if not os.path.exists(path):
        return data
    try:
        with open(path, 'r') as f:
            stored = json.load(f)
    except (OSError, ValueError) as err:
        log.warning("config_unreadable", path=path, error=str(err))
        return data
    if not isinstance(stored, dict):
        log.warning("config_unreadable", path=path, error="top-level value is not an object")
        return data
    data.update(stored)
    return data


def save_config(config, path=CONFIG_PATH):
    with open(path, 'w') as f:
        json.dump(config, f, indent=4)
