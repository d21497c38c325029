"""
Query objects for the MongoDB store client.

A small fluent builder: ``QueryBuilder().db("shop").table("orders").get(7)``
returns an object whose ``run(connection, callback)`` performs the driver call
and reports ``callback(error, result)``. A "database" is a MongoDB database and
a "table" is one of its collections.

Driver errors are delivered through the callback, never raised. Anything
raised out of ``run`` is a programming error (no connection, a callback that
itself raised) and is left to the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ExecutionTimeout, PyMongoError

from datalayer.config import QUERY_TIMEOUT_MS
from datalayer.errors import DataLayerError
from datalayer.logger import logger

Callback = Callable[[Optional[BaseException], Any], None]

CONFLICT_STRATEGIES = ("error", "replace", "update")


# ---------------------- HELPERS ----------------------

def _stringify_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert an ObjectId ``_id`` to a string so it is JSON-serialisable."""
    if doc is not None and isinstance(doc.get("_id"), ObjectId):
        doc["_id"] = str(doc["_id"])
    return doc


def _id_filter(doc_id: Any) -> Dict[str, Any]:
    """Match a primary key given either natively or as an ObjectId hex string."""
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [doc_id, ObjectId(doc_id)]}}
    return {"_id": doc_id}


# ---------------------- BASE ----------------------

class Query:
    """A pending database operation."""

    def _perform(self, client) -> Any:
        raise NotImplementedError

    def run(self, connection, callback: Callback) -> None:
        if connection is None:
            raise DataLayerError("No database connection; acquire one first")

        try:
            result = self._perform(connection.client)
        except ExecutionTimeout:
            callback(TimeoutError("Query timed out after exceeding the time limit."), None)
            return
        except (PyMongoError, DataLayerError) as e:
            logger.debug("[QUERY] %r failed: %s", self, e)
            callback(e, None)
            return

        callback(None, result)


# ---------------------- SERVER LEVEL ----------------------

@dataclass(frozen=True)
class DbList(Query):
    def _perform(self, client) -> List[str]:
        return client.list_database_names()


@dataclass(frozen=True)
class DbCreate(Query):
    name: str

    def _perform(self, client) -> Dict[str, int]:
        # MongoDB only materialises a database with its first collection.
        if self.name in client.list_database_names():
            raise DataLayerError(f"Database `{self.name}` already exists")
        client.get_database(self.name)  # rejects invalid names
        return {"dbs_created": 1}


# ---------------------- DATABASE LEVEL ----------------------

@dataclass(frozen=True)
class TableList(Query):
    database: str

    def _perform(self, client) -> List[str]:
        return client[self.database].list_collection_names()


@dataclass(frozen=True)
class TableCreate(Query):
    database: str
    name: str

    def _perform(self, client) -> Dict[str, int]:
        client[self.database].create_collection(self.name)
        return {"tables_created": 1}


@dataclass(frozen=True)
class TableDrop(Query):
    database: str
    name: str

    def _perform(self, client) -> Dict[str, int]:
        db = client[self.database]
        if self.name not in db.list_collection_names():
            raise DataLayerError(
                f"Table `{self.database}.{self.name}` does not exist"
            )
        db.drop_collection(self.name)
        return {"tables_dropped": 1}


# ---------------------- DOCUMENT LEVEL ----------------------

@dataclass(frozen=True)
class Get(Query):
    database: str
    table: str
    doc_id: Any

    def _perform(self, client) -> Optional[Dict[str, Any]]:
        collection = client[self.database][self.table]
        doc = collection.find_one(_id_filter(self.doc_id), max_time_ms=QUERY_TIMEOUT_MS)
        return _stringify_id(doc)

    def delete(self) -> "Delete":
        return Delete(self.database, self.table, self.doc_id)


@dataclass(frozen=True)
class Delete(Query):
    database: str
    table: str
    doc_id: Any

    def _perform(self, client) -> Dict[str, int]:
        result = client[self.database][self.table].delete_one(_id_filter(self.doc_id))
        deleted = result.deleted_count
        return {"deleted": deleted, "skipped": 1 - deleted}


@dataclass(frozen=True)
class Insert(Query):
    """Insert one document or a list of them.

    ``options["conflict"]`` decides what happens when a document's ``_id``
    already exists:

        error:   count it under ``errors`` and keep going (default)
        replace: overwrite the stored document
        update:  merge the new fields into the stored document
    """

    database: str
    table: str
    document: Any
    options: Dict[str, Any] = field(default_factory=dict)

    def _documents(self) -> List[Dict[str, Any]]:
        docs = self.document if isinstance(self.document, list) else [self.document]
        for doc in docs:
            if not isinstance(doc, dict):
                raise DataLayerError(f"Expected a document, got {type(doc).__name__}")
        # never hand the caller's dicts to the driver, it writes `_id` into them
        return [dict(doc) for doc in docs]

    def _perform(self, client) -> Dict[str, Any]:
        conflict = (self.options or {}).get("conflict", "error")
        if conflict not in CONFLICT_STRATEGIES:
            raise DataLayerError(
                f"Unknown conflict strategy `{conflict}`; "
                f"expected one of {', '.join(CONFLICT_STRATEGIES)}"
            )

        docs = self._documents()
        collection = client[self.database][self.table]
        summary: Dict[str, Any] = {
            "inserted": 0,
            "replaced": 0,
            "unchanged": 0,
            "errors": 0,
            "generated_keys": [],
        }

        for doc in docs:
            if conflict == "error" or "_id" not in doc:
                had_key = "_id" in doc
                try:
                    result = collection.insert_one(doc)
                except DuplicateKeyError as e:
                    summary["errors"] += 1
                    summary.setdefault("first_error", str(e))
                    continue
                summary["inserted"] += 1
                if not had_key:
                    summary["generated_keys"].append(str(result.inserted_id))
                continue

            doc_id = doc["_id"]
            fields = {k: v for k, v in doc.items() if k != "_id"}

            if conflict == "replace":
                result = collection.replace_one({"_id": doc_id}, doc, upsert=True)
            elif fields:
                result = collection.update_one(
                    {"_id": doc_id}, {"$set": fields}, upsert=True
                )
            else:
                # nothing to merge: behaves like insert-if-missing
                if collection.find_one({"_id": doc_id}, max_time_ms=QUERY_TIMEOUT_MS):
                    summary["unchanged"] += 1
                else:
                    collection.insert_one(doc)
                    summary["inserted"] += 1
                continue

            if result.upserted_id is not None:
                summary["inserted"] += 1
            elif result.modified_count:
                summary["replaced"] += 1
            else:
                summary["unchanged"] += 1

        return summary


# ---------------------- BUILDER ----------------------

class TableRef:
    def __init__(self, database: str, name: str):
        self.database = database
        self.name = name

    def get(self, doc_id: Any) -> Get:
        return Get(self.database, self.name, doc_id)

    def insert(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Insert:
        return Insert(self.database, self.name, document, dict(options or {}))


class DatabaseRef:
    def __init__(self, name: str):
        self.name = name

    def table_list(self) -> TableList:
        return TableList(self.name)

    def table_create(self, name: str) -> TableCreate:
        return TableCreate(self.name, name)

    def table_drop(self, name: str) -> TableDrop:
        return TableDrop(self.name, name)

    def table(self, name: str) -> TableRef:
        return TableRef(self.name, name)


class QueryBuilder:
    """Entry point of the query builder, returned by ``query()``."""

    def db_list(self) -> DbList:
        return DbList()

    def db_create(self, name: str) -> DbCreate:
        return DbCreate(name)

    def db(self, name: str) -> DatabaseRef:
        return DatabaseRef(name)
