"""
Low level wrapper for the underlying database.

A :class:`DataLayer` owns at most one live connection. Callers ask for it with
:meth:`DataLayer.acquire`; the first request opens the connection, requests
arriving while that attempt is in flight wait for it and are all released
with the same outcome, and later requests are answered immediately.

Once connected, the handle's ``error``, ``close`` and ``timeout`` events drop
the connection and are passed to the failure policy. The default policy,
:func:`fail_fast`, raises :class:`ConnectionFault`. The fault is also kept on
the layer: every later ``acquire`` or ``execute`` raises it again, so a lost
connection stays fatal even when the event arrived on a driver thread that
swallows exceptions.
"""

import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from datalayer.errors import ConnectionFault, DataLayerConnectionError, DataLayerErrors
from datalayer.logger import logger
from datalayer.store import MongoStoreClient

ReadyCallback = Callable[[Optional[BaseException], Optional["DataLayer"]], None]
ResultCallback = Callable[[Optional[BaseException], Any], None]
FailurePolicy = Callable[[DataLayerErrors, Optional[BaseException]], None]

MONITORED_EVENTS = {
    "error": DataLayerErrors.CONNECTION_ERROR,
    "close": DataLayerErrors.CONNECTION_DROP,
    "timeout": DataLayerErrors.CONNECTION_TIMEOUT,
}


def fail_fast(kind: DataLayerErrors, error: Optional[BaseException] = None) -> None:
    """Default failure policy: treat any post-connect fault as fatal."""
    logger.critical("[MONITOR] Database connection failure (%s): %s", kind.name, error)
    raise ConnectionFault(kind, error)


class DataLayer:
    """Connection manager around a store client.

    ``store`` must provide ``connect(options, callback)`` and ``query()``; it
    defaults to :class:`datalayer.store.MongoStoreClient`.
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        store=None,
        failure_policy: FailurePolicy = fail_fast,
    ):
        self._store = store if store is not None else MongoStoreClient()
        self._options = MappingProxyType(dict(options or {}))
        self._failure_policy = failure_policy
        self._handler: FailurePolicy = failure_policy

        self._connection = None
        self._connecting = False
        self._monitored = None
        self._fault: Optional[ConnectionFault] = None
        self._waiters: List[ReadyCallback] = []
        self._lock = threading.Lock()

    # ---------------------- CONNECTION ----------------------

    def _raise_fault(self) -> None:
        if self._fault is not None:
            raise self._fault

    def acquire(self, on_ready: ReadyCallback) -> None:
        """Hand the connected layer to ``on_ready(error, layer)``.

        Opens the connection on first use. On failure ``on_ready`` receives a
        :class:`DataLayerConnectionError` and None; a later call tries again.
        Raises the recorded :class:`ConnectionFault` once a connection was
        lost under the fatal policy.
        """
        self._raise_fault()
        with self._lock:
            if self._connection is not None:
                connected = True
            else:
                connected = False
                self._waiters.append(on_ready)
                if self._connecting:
                    logger.debug("[CONNECT] Connect in flight, queued (%d waiting)", len(self._waiters))
                    return
                self._connecting = True

        if connected:
            on_ready(None, self)
            return

        logger.info("[CONNECT] Opening database connection")
        answered = []

        def on_connect(error: Optional[BaseException], connection) -> None:
            answered.append(True)
            self._connected(error, connection)

        try:
            self._store.connect(self._options, on_connect)
        except Exception as e:
            if answered:
                # raised by a waiter while the store answered synchronously
                raise
            self._connected(e, None)

    def _connected(self, error: Optional[BaseException], connection) -> None:
        with self._lock:
            if not self._connecting:
                # store client reported twice; the attempt is already settled
                logger.warning("[CONNECT] Ignoring late connect result: %s", error)
                return
            waiters, self._waiters = self._waiters, []
            self._connecting = False
            if error is None:
                self._connection = connection

        if error is not None:
            failure = DataLayerConnectionError(error)
            logger.error("[CONNECT] %s: %s (%d caller(s) notified)", failure, error, len(waiters))
            self._notify(waiters, failure, None)
            return

        self.monitor_connection()
        self._notify(waiters, None, self)

    @staticmethod
    def _notify(waiters: List[ReadyCallback], error, session) -> None:
        """Call every waiter, then re-raise the first exception one of them raised."""
        raised = None
        for waiter in waiters:
            try:
                waiter(error, session)
            except Exception as e:
                logger.error("[CONNECT] Ready callback raised: %s", e)
                if raised is None:
                    raised = e
        if raised is not None:
            raise raised

    def monitor_connection(self, error_handler: Optional[FailurePolicy] = None) -> bool:
        """Route the handle's error/close/timeout events to ``error_handler``.

        Replaces the active handler; without one the layer's failure policy
        is used. Returns False when the handle does not support event
        subscription.
        """
        connection = self._connection
        subscribe = getattr(connection, "on", None)
        if not callable(subscribe):
            logger.debug("[MONITOR] Connection does not emit events, not monitored")
            return False

        self._handler = error_handler or self._failure_policy
        if self._monitored is connection:
            return True
        self._monitored = connection

        def relay(kind: DataLayerErrors) -> Callable[[Optional[BaseException]], None]:
            def on_event(error: Optional[BaseException] = None) -> None:
                with self._lock:
                    if self._connection is not connection:
                        return  # no longer ours, see close()
                    self._connection = None
                logger.warning("[MONITOR] Connection %s, dropped: %s", kind.name, error)
                try:
                    self._handler(kind, error)
                except ConnectionFault as fault:
                    self._fault = fault
                    raise
            return on_event

        for event, kind in MONITORED_EVENTS.items():
            subscribe(event, relay(kind))
        return True

    def close(self) -> None:
        """Release the held connection without triggering the failure policy."""
        with self._lock:
            connection, self._connection = self._connection, None
        if connection is not None and callable(getattr(connection, "close", None)):
            connection.close()

    # ---------------------- ACCESSORS ----------------------

    def get_options(self) -> Mapping[str, Any]:
        return self._options

    def get_connection(self):
        return self._connection

    def query(self):
        """Return the store client's native query builder."""
        return self._store.query()

    # ---------------------- EXECUTION ----------------------

    def execute(self, query, callback: ResultCallback) -> None:
        """Run ``query`` on the held connection and report to ``callback``.

        Errors raised while dispatching the query are delivered as
        ``callback(error, None)`` instead of propagating.
        A connection lost under the fatal policy raises its
        :class:`ConnectionFault` instead.
        """
        self._raise_fault()
        delivered = []

        def deliver(error: Optional[BaseException] = None, result: Any = None) -> None:
            delivered.append(True)
            callback(error, result)

        try:
            query.run(self._connection, deliver)
        except Exception as e:
            if delivered:
                # raised by the caller's own callback
                raise
            logger.warning("[EXECUTE] %r failed to dispatch: %s", query, e)
            callback(e, None)

    # shorthand self-explanatory methods

    def db_list(self, callback: ResultCallback) -> None:
        self.execute(self.query().db_list(), callback)

    def db_create(self, database: str, callback: ResultCallback) -> None:
        self.execute(self.query().db_create(database), callback)

    def table_list(self, database: str, callback: ResultCallback) -> None:
        self.execute(self.query().db(database).table_list(), callback)

    def table_create(self, database: str, table: str, callback: ResultCallback) -> None:
        self.execute(self.query().db(database).table_create(table), callback)

    def table_delete(self, database: str, table: str, callback: ResultCallback) -> None:
        self.execute(self.query().db(database).table_drop(table), callback)

    def get(self, database: str, table: str, doc_id: Any, callback: ResultCallback) -> None:
        self.execute(self.query().db(database).table(table).get(doc_id), callback)

    def delete(self, database: str, table: str, doc_id: Any, callback: ResultCallback) -> None:
        self.execute(self.query().db(database).table(table).get(doc_id).delete(), callback)

    def insert(
        self,
        database: str,
        table: str,
        document: Any,
        options: Optional[Dict[str, Any]],
        callback: ResultCallback,
    ) -> None:
        self.execute(self.query().db(database).table(table).insert(document, options), callback)
