"""Shared fixtures: a small protocol with hand-picked buckets."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lockledger.config.schema import Config
from lockledger.engine.protocol import Protocol

TEST_BUCKETS = [
    {'duration': 1, 'multiplier': 1.0},
    {'duration': 4, 'multiplier': 1.1},
    {'duration': 10, 'multiplier': 1.2},
    {'duration': 20, 'multiplier': 1.5},
]


def make_config(**overrides) -> Config:
    data = {
        'protocol': {'start_timestamp': 0},
        'buckets': TEST_BUCKETS,
    }
    data.update(overrides)
    return Config.from_dict(data)


@pytest.fixture
def protocol() -> Protocol:
    """Fresh protocol at epoch 0 with buckets 1, 4, 10 and 20."""
    return Protocol(make_config())
