"""
MongoDB store client: opens connections and hands out the query builder.

The connection handle returned by :meth:`MongoStoreClient.connect` supports
``on(event, listener)`` for the ``error``, ``close`` and ``timeout`` events so
the data layer can monitor it. Heartbeat failures reported by the driver's
server monitor are relayed as ``timeout`` (network timeouts) or ``error``.
"""

import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

from pymongo import MongoClient, monitoring
from pymongo.errors import NetworkTimeout, PyMongoError

from datalayer.config import SERVER_TIMEOUT_MS
from datalayer.logger import logger
from datalayer.queries import QueryBuilder

CONNECTION_EVENTS = ("error", "close", "timeout")

Listener = Callable[[Optional[BaseException]], None]


class _HeartbeatRelay(monitoring.ServerHeartbeatListener):
    """Forwards failed server heartbeats to the owning connection."""

    def __init__(self):
        self.connection: Optional["MongoConnection"] = None

    def started(self, event):
        pass

    def succeeded(self, event):
        pass

    def failed(self, event):
        if self.connection is None:
            return
        error = event.reply
        name = "timeout" if isinstance(error, NetworkTimeout) else "error"
        logger.warning("[MONITOR] Heartbeat to %s failed: %s", event.connection_id, error)
        self.connection.emit(name, error)


class MongoConnection:
    """Live connection handle wrapping a ``MongoClient``."""

    def __init__(self, client: MongoClient):
        self.client = client
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in CONNECTION_EVENTS}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, listener: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown connection event `{event}`")
        with self._lock:
            self._listeners[event].append(listener)

    def emit(self, event: str, error: Optional[BaseException] = None) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            listener(error)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.client.close()
        logger.info("[CONNECT] Connection closed")
        self.emit("close", None)


class MongoStoreClient:
    """Store client backed by pymongo.

    ``client_factory`` builds the driver client from the options blob; it
    defaults to ``MongoClient`` and exists so tests can substitute it.
    """

    def __init__(self, client_factory: Callable[..., Any] = MongoClient):
        self._client_factory = client_factory
        self._builder = QueryBuilder()

    def connect(
        self,
        options: Mapping[str, Any],
        callback: Callable[[Optional[BaseException], Optional[MongoConnection]], None],
    ) -> None:
        """Create and test a client connection, then report it to ``callback``."""
        settings = dict(options)
        settings.setdefault("serverSelectionTimeoutMS", SERVER_TIMEOUT_MS)
        relay = _HeartbeatRelay()
        settings["event_listeners"] = list(settings.get("event_listeners") or []) + [relay]

        client = None
        try:
            client = self._client_factory(**settings)
            client.server_info()  # force connection test
        except PyMongoError as e:
            logger.error("[CONNECT] Failed to connect to MongoDB: %s", e)
            if client is not None:
                client.close()
            callback(e, None)
            return

        connection = MongoConnection(client)
        relay.connection = connection
        logger.info("[CONNECT] Connected to MongoDB")
        callback(None, connection)

    def query(self) -> QueryBuilder:
        return self._builder
