"""
Error kinds and exception types raised by the data layer.
"""

from enum import IntEnum
from typing import Optional


class DataLayerErrors(IntEnum):
    CONNECTION_ERROR = 1
    CONNECTION_DROP = 2
    CONNECTION_TIMEOUT = 3


class DataLayerError(Exception):
    """Base class for data layer failures.

    ``kind`` is one of :class:`DataLayerErrors` (or None for errors that are
    not connection related) and ``cause`` the underlying driver error.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[DataLayerErrors] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class DataLayerConnectionError(DataLayerError):
    """The initial connect attempt failed."""

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(
            "Unable to connect to the database",
            DataLayerErrors.CONNECTION_ERROR,
            cause,
        )


class ConnectionFault(DataLayerError):
    """An established connection reported an error, a close or a timeout."""

    def __init__(self, kind: DataLayerErrors, cause: Optional[BaseException] = None):
        super().__init__("Database connection failure", kind, cause)
