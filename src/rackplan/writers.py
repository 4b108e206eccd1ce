#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import json
from pathlib import Path
from typing import Any

from rackplan.store.data_store import DataStore


def save_json(data: Any, path: str | Path, indent: int = 4):
    with open(path, "w") as f:
        json.dump(data, f, indent=indent)


def save_store(store: DataStore, path: str | Path, indent: int = 4):
    save_json(store.to_dict(), path, indent=indent)
