"""
FastAPI service exposing the data layer's shorthand operations over HTTP.

Databases, tables and documents map onto the store's databases, collections
and documents. Connection failures surface as 503, query timeouts as 408 and
any other store error as 400.
"""

from concurrent.futures import Future
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Literal, Union

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from datalayer.config import SERVER_TIMEOUT_MS, default_options
from datalayer.data_layer import DataLayer
from datalayer.errors import DataLayerConnectionError
from datalayer.logger import logger

# generous upper bound on how long a request waits for a callback
REQUEST_TIMEOUT_S = 2 * SERVER_TIMEOUT_MS / 1000

_layer = DataLayer(default_options())


# ---------------------- CALLBACK BRIDGE ----------------------


def _wait(operation: Callable[..., None], *args: Any) -> Any:
    """Call a callback-style ``operation`` and block until it reports back."""
    future: Future = Future()

    def done(error, result=None):
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    operation(*args, done)
    return future.result(timeout=REQUEST_TIMEOUT_S)


def _run(label: str, operation: Callable[..., None], *args: Any) -> Any:
    try:
        return _wait(operation, *args)
    except TimeoutError:
        raise HTTPException(
            status_code=408,
            detail="Query timed out. Try again later.",
        )
    except Exception as e:
        logger.error("[API] %s error: %s", label, e)
        raise HTTPException(status_code=400, detail=str(e))


# ---------------------- DEPENDENCIES ----------------------


def layer_instance() -> DataLayer:
    return _layer


def get_layer(layer: DataLayer = Depends(layer_instance)) -> DataLayer:
    """Connected data layer for the request."""
    try:
        return _wait(layer.acquire)
    except DataLayerConnectionError as e:
        logger.error("[API] %s: %s", e, e.cause)
        raise HTTPException(status_code=503, detail=str(e))
    except TimeoutError:
        logger.error("[API] Timed out waiting for the database connection")
        raise HTTPException(
            status_code=503,
            detail="Timed out connecting to the database",
        )
    except Exception as e:
        logger.error("[API] acquire error: %s", e)
        raise HTTPException(status_code=503, detail=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    _layer.close()


app = FastAPI(title="Data Layer", version="1.0.0", lifespan=lifespan)


# ---------------------- REQUEST MODELS ----------------------


class DatabaseRequest(BaseModel):
    name: str = Field(min_length=1)


class TableRequest(BaseModel):
    name: str = Field(min_length=1)


class DocumentRequest(BaseModel):
    document: Union[Dict[str, Any], List[Dict[str, Any]]]
    conflict: Literal["error", "replace", "update"] = "error"


# ---------------------- ENDPOINTS ----------------------


@app.get("/health")
def health(layer: DataLayer = Depends(layer_instance)):
    return {"connected": layer.get_connection() is not None}


@app.get("/databases")
def list_databases(layer: DataLayer = Depends(get_layer)):
    databases = _run("list-databases", layer.db_list)
    return {"total_databases": len(databases), "databases": databases}


@app.post("/databases", status_code=201)
def create_database(request: DatabaseRequest, layer: DataLayer = Depends(get_layer)):
    return _run("create-database", layer.db_create, request.name)


@app.get("/databases/{database}/tables")
def list_tables(database: str, layer: DataLayer = Depends(get_layer)):
    return {"tables": _run("list-tables", layer.table_list, database)}


@app.post("/databases/{database}/tables", status_code=201)
def create_table(database: str, request: TableRequest, layer: DataLayer = Depends(get_layer)):
    return _run("create-table", layer.table_create, database, request.name)


@app.delete("/databases/{database}/tables/{table}")
def drop_table(database: str, table: str, layer: DataLayer = Depends(get_layer)):
    return _run("drop-table", layer.table_delete, database, table)


@app.get("/databases/{database}/tables/{table}/documents/{doc_id}")
def get_document(database: str, table: str, doc_id: str, layer: DataLayer = Depends(get_layer)):
    document = _run("get-document", layer.get, database, table, doc_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document `{doc_id}` not found")
    return document


@app.delete("/databases/{database}/tables/{table}/documents/{doc_id}")
def delete_document(database: str, table: str, doc_id: str, layer: DataLayer = Depends(get_layer)):
    return _run("delete-document", layer.delete, database, table, doc_id)


@app.post("/databases/{database}/tables/{table}/documents", status_code=201)
def insert_documents(
    database: str,
    table: str,
    request: DocumentRequest,
    layer: DataLayer = Depends(get_layer),
):
    return _run(
        "insert-documents",
        layer.insert,
        database,
        table,
        request.document,
        {"conflict": request.conflict},
    )
