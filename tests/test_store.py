from unittest.mock import MagicMock

import pytest
from pymongo.errors import AutoReconnect, NetworkTimeout, ServerSelectionTimeoutError
from pymongo.monitoring import _EventListeners

from conftest import Recorder
from datalayer.config import SERVER_TIMEOUT_MS
from datalayer.data_layer import DataLayer
from datalayer.errors import ConnectionFault, DataLayerConnectionError, DataLayerErrors
from datalayer.queries import QueryBuilder
from datalayer.store import MongoConnection, MongoStoreClient


@pytest.fixture()
def factory(mongo_client):
    return MagicMock(return_value=mongo_client)


def _publish_heartbeat_failure(factory, reply):
    """Report a failed heartbeat the way the driver's server monitor does."""
    listeners = _EventListeners(factory.call_args.kwargs["event_listeners"])
    listeners.publish_server_heartbeat_failed(("db", 27017), 0.01, reply, False)


def test_connect_builds_and_tests_client(factory, mongo_client, recorder):
    MongoStoreClient(factory).connect({"host": "mongodb://db"}, recorder)

    error, connection = recorder.calls[0]
    assert error is None
    assert isinstance(connection, MongoConnection)
    assert connection.client is mongo_client
    mongo_client.server_info.assert_called_once_with()

    kwargs = factory.call_args.kwargs
    assert kwargs["host"] == "mongodb://db"
    assert kwargs["serverSelectionTimeoutMS"] == SERVER_TIMEOUT_MS


def test_connect_keeps_caller_listeners_and_timeout(factory, recorder):
    listener = object()
    MongoStoreClient(factory).connect(
        {"serverSelectionTimeoutMS": 100, "event_listeners": [listener]}, recorder
    )

    kwargs = factory.call_args.kwargs
    assert kwargs["serverSelectionTimeoutMS"] == 100
    assert kwargs["event_listeners"][0] is listener
    assert len(kwargs["event_listeners"]) == 2


def test_connect_failure_closes_client(factory, mongo_client, recorder):
    failure = ServerSelectionTimeoutError("no servers")
    mongo_client.server_info.side_effect = failure

    MongoStoreClient(factory).connect({}, recorder)

    assert recorder.calls == [(failure, None)]
    mongo_client.close.assert_called_once_with()


@pytest.mark.parametrize(
    "reply, event",
    [(NetworkTimeout("timed out"), "timeout"), (AutoReconnect("reset"), "error")],
)
def test_heartbeat_failures_are_relayed(factory, recorder, reply, event):
    MongoStoreClient(factory).connect({}, recorder)
    connection = recorder.result
    seen = []
    connection.on(event, seen.append)

    _publish_heartbeat_failure(factory, reply)

    assert seen == [reply]


def test_close_emits_once(mongo_client):
    connection = MongoConnection(mongo_client)
    seen = []
    connection.on("close", seen.append)

    connection.close()
    connection.close()

    assert connection.closed
    assert seen == [None]
    mongo_client.close.assert_called_once_with()


def test_unknown_event_rejected(mongo_client):
    with pytest.raises(ValueError):
        MongoConnection(mongo_client).on("reconnect", print)


def test_query_returns_builder():
    assert isinstance(MongoStoreClient(MagicMock()).query(), QueryBuilder)


def test_layer_over_mongo_store_reports_heartbeat_timeout(factory):
    seen = []
    layer = DataLayer(
        {"host": "mongodb://db"},
        store=MongoStoreClient(factory),
        failure_policy=lambda kind, error: seen.append(kind),
    )
    recorder = Recorder()
    layer.acquire(recorder)

    _publish_heartbeat_failure(factory, NetworkTimeout("slow"))

    assert recorder.calls == [(None, layer)]
    assert seen == [DataLayerErrors.CONNECTION_TIMEOUT]


def test_layer_over_unreachable_mongo(factory, mongo_client):
    mongo_client.server_info.side_effect = ServerSelectionTimeoutError("no servers")
    layer = DataLayer(store=MongoStoreClient(factory))
    recorder = Recorder()

    layer.acquire(recorder)

    assert isinstance(recorder.error, DataLayerConnectionError)
    assert layer.get_connection() is None


def test_heartbeat_failure_is_fatal_by_default(factory):
    layer = DataLayer({"host": "mongodb://db"}, store=MongoStoreClient(factory))
    layer.acquire(Recorder())

    # the driver swallows listener exceptions, the layer must remember the fault
    _publish_heartbeat_failure(factory, AutoReconnect("reset"))

    assert layer.get_connection() is None
    with pytest.raises(ConnectionFault) as excinfo:
        layer.acquire(Recorder())
    assert excinfo.value.kind is DataLayerErrors.CONNECTION_ERROR
    assert factory.call_count == 1
