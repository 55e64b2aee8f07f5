"""Shared fixtures for lbcfg tests."""

import pytest

from lbcfg.backend.base import BackendClient
from lbcfg.models import LbStatus
from lbcfg.templates import Translator


class FakeClient(BackendClient):
    """In-memory BackendClient recording every call."""

    def __init__(self, details=None, update_error=None, status_error=None):
        self.details = details or []
        self.update_error = update_error
        self.status_error = status_error
        self.targets = []
        self.updates = []
        self.status_calls = 0
        self.closed = False

    def add_target(self, lb_id):
        self.targets.append(lb_id)

    async def status(self):
        self.status_calls += 1
        if self.status_error is not None:
            raise self.status_error
        return self.details

    async def update_node(self, node_name, condition):
        self.updates.append((node_name, condition))
        if self.update_error is not None:
            raise self.update_error

    async def close(self):
        self.closed = True


class RecordingFactory:
    """Client factory that hands out one prepared client and records keys."""

    def __init__(self, client):
        self.client = client
        self.keys = []

    def __call__(self, env_key):
        self.keys.append(env_key)
        return self.client


@pytest.fixture
def translator():
    return Translator()


@pytest.fixture
def happy_tree():
    return {"sf": {"test": {"lita": [42, 84]}}}


@pytest.fixture
def happy_status():
    return [
        LbStatus.model_validate({
            "name": "test-lb01",
            "id": 42,
            "nodes": [
                {"name": "app01", "condition": "ENABLED", "ip": "127.0.0.1", "id": 142},
                {"name": "app02", "condition": "DRAINING", "ip": "127.0.0.2", "id": 184},
            ],
        }),
        LbStatus.model_validate({
            "name": "test-lb02",
            "id": 84,
            "nodes": [
                {"name": "app01", "condition": "ENABLED", "ip": "127.0.0.1", "id": 242},
                {"name": "app02", "condition": "DRAINING", "ip": "127.0.0.2", "id": 284},
            ],
        }),
    ]


@pytest.fixture
def fake_client_cls():
    return FakeClient


@pytest.fixture
def factory_cls():
    return RecordingFactory
