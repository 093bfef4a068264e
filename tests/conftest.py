from unittest.mock import MagicMock

import pytest

from crd_controller import ClusterClient, ResourceDescriptor

from fakes import FakeClock, RecordingHandler


@pytest.fixture
def descriptor():
    return ResourceDescriptor("samples.example", "v1", "widgets", "widget", reconcile_interval=5)


@pytest.fixture
def api():
    custom_objects = MagicMock()
    custom_objects.list_namespaced_custom_object.return_value = {"items": []}
    return custom_objects


@pytest.fixture
def cluster(api):
    return ClusterClient(custom_objects=api, core=MagicMock())


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def clock(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr("crd_controller.watcher.time", clock)
    monkeypatch.setattr("crd_controller.scheduler.time", clock)
    return clock
