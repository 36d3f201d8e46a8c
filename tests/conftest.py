"""Shared fixtures: a controllable clock and in-memory services."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from curalease.configs.base import CurationConfig
from curalease.observability import metrics
from curalease.service import CurationService


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_item(item_id, confidence=0.9, length=150, evidence=3, representative=True):
    return {
        "item_id": item_id,
        "pdb_id": item_id.split("_")[0],
        "chain_id": item_id.split("_")[-1],
        "sequence_length": length,
        "best_confidence": confidence,
        "evidence_count": evidence,
        "is_representative": representative,
    }


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return CurationConfig.in_memory(reaper={"enabled": False})


@pytest.fixture
def service(config, clock):
    svc = CurationService(config, clock=clock)
    yield svc
    svc.close()


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)
