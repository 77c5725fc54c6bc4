from .classes import Connection, Cursor, CursorState, DatabaseType, Row, connect
from .exceptions import (
    DatabaseAccessError,
    DatabaseConnectionError,
    StateError,
    DatabaseNotConnected,
    BindingMismatchError,
    TransactionError,
    QueryError,
    TableDoesNotExist,
    DatabaseTypeNotSupported,
)

__all__ = [
    "connect",
    "Connection",
    "Cursor",
    "CursorState",
    "DatabaseType",
    "Row",
    "DatabaseAccessError",
    "DatabaseConnectionError",
    "StateError",
    "DatabaseNotConnected",
    "BindingMismatchError",
    "TransactionError",
    "QueryError",
    "TableDoesNotExist",
    "DatabaseTypeNotSupported",
]
