#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
from typing import Iterator

import pytest

from rackplan.capacity.records import create_side
from rackplan.store.data_store import DataStore, new_store
from tests.capacity.capacity_utils import RACKS


@pytest.fixture(scope="function", autouse=True)
def store() -> Iterator[DataStore]:
    """Autouse fixture which will setup and teardown a fresh store
    before and after each test function"""
    with new_store(DataStore()) as test_store:
        yield test_store


@pytest.fixture
def side_id(store: DataStore) -> int:
    return create_side("Power", RACKS)
