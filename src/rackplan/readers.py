#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import json
import logging
from pathlib import Path

from rackplan.store.data_store import DataStore

logger = logging.getLogger(__name__)


def load_json(path: str | Path):
    with open(path, "r") as f:
        data = json.load(f)
    return data


def load_store(path: str | Path) -> DataStore:
    """Load a store serialized with `rackplan.writers.save_store`."""
    store = DataStore.from_dict(load_json(path))
    logger.info(f"Loaded store from {path}")
    return store
