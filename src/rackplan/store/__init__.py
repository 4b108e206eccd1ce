#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
from rackplan.store.data_store import (
    DataStore,
    get_current_store,
    new_store,
    set_current_store,
)
from rackplan.store.schemas import DatabaseNamespace

__all__ = [
    "DataStore",
    "DatabaseNamespace",
    "get_current_store",
    "new_store",
    "set_current_store",
]
