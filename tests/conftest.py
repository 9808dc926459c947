import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Tests never touch the on-disk store
os.environ.setdefault("STORE_BACKEND", "memory")

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from alerting.lifecycle import AlertLifecycleManager
from alerting.processor import ReadingProcessor
from alerting.registry import BinRegistry
from storage.documents import MemoryStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store):
    reg = BinRegistry(store)
    reg.seed()
    return reg


@pytest.fixture
def lifecycle(store, clock):
    return AlertLifecycleManager(store, clock=clock)


@pytest.fixture
def processor(store, registry, lifecycle, clock):
    return ReadingProcessor(store, lifecycle=lifecycle, registry=registry, clock=clock)
