from .connection import Connection, connect
from .cursor import Cursor, CursorState
from .database_type import DatabaseType
from .row import Row

__all__ = [
    "Connection",
    "connect",
    "Cursor",
    "CursorState",
    "DatabaseType",
    "Row",
]
