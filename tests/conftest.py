from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from datalayer.app import app, layer_instance
from datalayer.data_layer import DataLayer
from datalayer.store import MongoStoreClient


class Recorder:
    """Callback stand-in remembering every ``(error, result)`` it receives."""

    def __init__(self):
        self.calls = []

    def __call__(self, error, result=None):
        self.calls.append((error, result))

    @property
    def error(self):
        return self.calls[-1][0]

    @property
    def result(self):
        return self.calls[-1][1]


class RecordingQuery:
    """Query builder that records the chain of calls made on it."""

    def __init__(self, chain=()):
        self.chain = chain

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        def step(*args):
            return RecordingQuery(self.chain + ((name, args),))

        return step

    def run(self, connection, callback):
        callback(None, {"connection": connection, "chain": self.chain})


class FakeConnection:
    def __init__(self, name="H1"):
        self.name = name
        self.listeners = {}
        self.closed = False

    def on(self, event, listener):
        self.listeners.setdefault(event, []).append(listener)

    def emit(self, event, error=None):
        for listener in self.listeners.get(event, []):
            listener(error)

    def close(self):
        self.closed = True
        self.emit("close")


class FakeStore:
    """Store client whose connect either answers at once or on ``resolve()``."""

    def __init__(self, handle=None, error=None, deferred=False):
        self.handle = handle if handle is not None else FakeConnection()
        self.error = error
        self.deferred = deferred
        self.connect_calls = []
        self.pending = []

    def _answer(self, callback):
        if self.error is not None:
            callback(self.error, None)
        else:
            callback(None, self.handle)

    def connect(self, options, callback):
        self.connect_calls.append(options)
        if self.deferred:
            self.pending.append(callback)
        else:
            self._answer(callback)

    def resolve(self):
        pending, self.pending = self.pending, []
        for callback in pending:
            self._answer(callback)

    def query(self):
        return RecordingQuery()


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def layer(store):
    return DataLayer({"host": "x"}, store=store)


@pytest.fixture()
def mongo_client():
    client = MagicMock(name="MongoClient")
    client.list_database_names.return_value = ["admin", "shop"]
    return client


@pytest.fixture()
def mongo_layer(mongo_client):
    return DataLayer(
        {"host": "mongodb://test"},
        store=MongoStoreClient(lambda **kwargs: mongo_client),
    )


@pytest.fixture()
def api(mongo_layer):
    app.dependency_overrides[layer_instance] = lambda: mongo_layer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
