# MIT License
# Copyright (c) 2025 Hashborn

import os
import shutil
import tempfile
import pytest
from proofmarket.market.core.market import Marketplace
from proofmarket.protocol.types.common import LifecycleMode, StakeMode
from tests.helpers import ADMIN, SLASHER, FakeClock, make_config


@pytest.fixture
def db_dir():
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return make_config()


def _open_market(db_dir, clock, config) -> Marketplace:
    m = Marketplace(os.path.join(db_dir, "market.db"), config=config, clock=clock)
    m.bootstrap(ADMIN, roles={"SLASHER": [SLASHER]})
    return m


@pytest.fixture
def market(db_dir, clock, config):
    m = _open_market(db_dir, clock, config)
    yield m
    m.close()


@pytest.fixture
def two_phase_market(db_dir, clock):
    m = _open_market(db_dir, clock, make_config(lifecycle_mode=LifecycleMode.TWO_PHASE))
    yield m
    m.close()


@pytest.fixture
def native_market(db_dir, clock):
    m = _open_market(db_dir, clock, make_config(stake_mode=StakeMode.NATIVE))
    yield m
    m.close()
