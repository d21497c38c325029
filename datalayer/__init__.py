"""
Minimal data layer over a database driver: one managed connection, query
execution through callbacks and shorthand CRUD helpers.
"""

from datalayer.data_layer import DataLayer, fail_fast
from datalayer.errors import (
    ConnectionFault,
    DataLayerConnectionError,
    DataLayerError,
    DataLayerErrors,
)

__version__ = "1.0.0"

__all__ = [
    "DataLayer",
    "DataLayerErrors",
    "DataLayerError",
    "DataLayerConnectionError",
    "ConnectionFault",
    "fail_fast",
]
