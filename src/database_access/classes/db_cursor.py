from __future__ import annotations
from typing import Protocol, Any, Mapping, Sequence, runtime_checkable

# NOTE: raw driver rows are tuples; they are wrapped into Row objects by Cursor
RawRow = tuple[Any, ...]


@runtime_checkable
class DriverCursor(Protocol):
    """The subset of a DB-API 2.0 cursor (sqlite3, psycopg2, mysql-connector) that Cursor relies on."""

    # Common DB-API attributes
    description: Any | None
    rowcount: int

    # Core execution methods
    def execute(
        self,
        operation: str,
        params: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> Any: ...

    def executemany(
        self,
        operation: str,
        seq_of_params: Sequence[Sequence[Any] | Mapping[str, Any]],
    ) -> Any: ...

    # Fetch methods
    def fetchone(self) -> RawRow | None: ...
    def fetchmany(self, size: int = ...) -> list[RawRow]: ...
    def fetchall(self) -> list[RawRow]: ...

    # Lifecycle
    def close(self) -> None: ...


@runtime_checkable
class DriverConnection(Protocol):
    """The subset of a DB-API 2.0 connection that Connection relies on."""

    def cursor(self, *args: Any, **kwargs: Any) -> DriverCursor: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def close(self) -> None: ...
