# Standard imports
from __future__ import annotations
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Sequence
import pandas as pd

# Custom utils and objs
from ..exceptions import BindingMismatchError, DatabaseNotConnected, QueryError, StateError
from ..utils.placeholders import prepare_statement
from .db_cursor import DriverCursor
from .row import Row

if TYPE_CHECKING:
    from .connection import Connection


class CursorState(Enum):
    """Lifecycle states of a Cursor."""
    IDLE = 'idle'
    EXECUTING = 'executing'
    RESULTS_AVAILABLE = 'results_available'
    DRAINED = 'drained'
    CLOSED = 'closed'


# Cursor class definition
class Cursor(object):
    """Executes one parameterized statement at a time on its Connection and exposes the results as Row objects.

        NOTE:
            - A Cursor does not own its Connection and cannot be used once the Connection is closed
            - Cursors (like their Connection) are not safe to share between threads
    """

    connection:Connection           # The (non-owning) connection this cursor executes on
    state:CursorState               # Current lifecycle state
    statement:str|None              # The last statement template passed to execute()
    rowcount:int                    # Rows affected by the last statement (-1 when unknown)
    _raw:DriverCursor|None          # The driver's cursor; None once closed
    _columns:tuple[str, ...]        # Column names of the current result set


    def __init__(self, connection:Connection, raw_cursor:DriverCursor):
        self.connection = connection
        self._raw = raw_cursor
        self.state = CursorState.IDLE
        self.statement = None
        self.rowcount = -1
        self._columns = ()


    # ---- Properties ---- #
    @property
    def closed(self) -> bool:
        return self._raw is None

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names of the current result set (empty when the last statement returned no rows)."""
        return self._columns

    @property
    def description(self) -> Any | None:
        return None if self._raw is None else self._raw.description

    @property
    def lastrowid(self) -> Any | None:
        return getattr(self._raw, 'lastrowid', None)


    # ---- Internal helpers ---- #
    def _ensure_usable(self) -> None:
        """Raises a StateError if this cursor, or the connection it belongs to, is closed."""
        if self._raw is None:
            raise StateError('The cursor is closed.')
        if self.connection.closed:
            raise DatabaseNotConnected()

    def _reset_results(self, state:CursorState=CursorState.IDLE) -> None:
        self.state = state
        self.rowcount = -1
        self._columns = ()

    def _capture_results(self) -> None:
        """Moves to RESULTS_AVAILABLE if the last statement produced a result set, IDLE otherwise."""
        description = self._raw.description
        self.rowcount = getattr(self._raw, 'rowcount', -1)

        # No description means the statement does not return rows (DDL, INSERT/UPDATE/DELETE)
        if description is None:
            self._columns = ()
            self.state = CursorState.IDLE
            return

        self._columns = tuple(d[0] for d in description)
        self.state = CursorState.RESULTS_AVAILABLE

    def _fail(self, calling_func:str, exception:Exception) -> QueryError:
        """Returns the cursor to IDLE, logs the driver error and builds the QueryError to raise."""
        self._reset_results()

        # NOTE: a failed statement can leave an open (or aborted) transaction in the store
        self.connection._mark_pending()
        self.connection.log_error(calling_func, exception)
        return QueryError(self.statement, exception)


    # ---- Execution ---- #
    def execute(self, statement:str, params:Sequence[Any]|Mapping[str, Any]|None=None) -> Cursor:
        """Executes [statement] with [params] bound by the driver (never interpolated) and returns this cursor.

            - Placeholders may be written as ?, %s, :name or %(name)s; they are rewritten to the driver's own style
            - Raises BindingMismatchError (before anything is sent) if the placeholders and params don't match
            - Raises QueryError if the store rejects the statement
        """

        # Check that the cursor and cxn are still usable
        self._ensure_usable()

        db_type = self.connection.database_type

        # Bind check first, so nothing reaches the store on a mismatch
        try:
            sql, bound = prepare_statement(statement, params, db_type.paramstyle, backslash_escapes=db_type.backslash_escapes)
        except BindingMismatchError as e:
            self._reset_results()
            self.connection.log_error('Cursor.execute()', e)
            raise

        # Execute statement
        self._reset_results(CursorState.EXECUTING)
        self.statement = statement
        try:
            self.connection._begin()
            if bound is None:
                self._raw.execute(sql)
            else:
                self._raw.execute(sql, bound)

        # Handle and log errors
        except Exception as e:
            raise self._fail('Cursor.execute()', e) from e

        # Track the pending transaction and expose the results
        self.connection._mark_pending()
        self._capture_results()
        self.connection.log_debug('Cursor.execute()', f'Executed statement ({self.state.value}, rowcount={self.rowcount}).')
        return self


    def execute_many(self, statement:str, seq_of_params:Sequence[Sequence[Any]|Mapping[str, Any]]) -> int:
        """Executes [statement] once for every set of params in [seq_of_params] (driver executemany()).

        Every params set is checked before anything is sent; returns the number of affected rows (-1 when the driver
        can't tell).
        """

        # Check that the cursor and cxn are still usable
        self._ensure_usable()

        db_type = self.connection.database_type

        # Prepare each set of params
        sql:str = statement
        prepared:list = []
        try:
            for params in seq_of_params:
                sql, bound = prepare_statement(statement, params, db_type.paramstyle, backslash_escapes=db_type.backslash_escapes)
                prepared.append(() if bound is None else bound)
        except BindingMismatchError as e:
            self._reset_results()
            self.connection.log_error('Cursor.execute_many()', e)
            raise

        # Nothing to do
        if not prepared:
            self._reset_results()
            return 0

        # Execute
        self._reset_results(CursorState.EXECUTING)
        self.statement = statement
        try:
            self.connection._begin()
            self._raw.executemany(sql, prepared)

        # Handle and log errors
        except Exception as e:
            raise self._fail('Cursor.execute_many()', e) from e

        self.connection._mark_pending()
        self._capture_results()
        self.connection.log_debug('Cursor.execute_many()', f'Executed statement for {len(prepared)} parameter sets (rowcount={self.rowcount}).')
        return self.rowcount


    # ---- Fetching ---- #
    def fetch_one(self) -> Row|None:
        """Returns the next row, or None when no rows remain (also on every call after that)."""

        self._ensure_usable()

        # Nothing to fetch unless a result set is open
        if self.state is not CursorState.RESULTS_AVAILABLE:
            return None

        try:
            raw = self._raw.fetchone()
        except Exception as e:
            raise self._fail('Cursor.fetch_one()', e) from e

        # End of results
        if raw is None:
            self.state = CursorState.DRAINED
            return None

        return Row(raw, self._columns)


    def fetch_many(self, size:int|None=None) -> list[Row]:
        """Returns up to [size] of the remaining rows (the driver's arraysize if not given); an empty list at the end."""

        self._ensure_usable()

        if self.state is not CursorState.RESULTS_AVAILABLE:
            return []

        try:
            raws = self._raw.fetchmany() if size is None else self._raw.fetchmany(size)
        except Exception as e:
            raise self._fail('Cursor.fetch_many()', e) from e

        if not raws:
            self.state = CursorState.DRAINED

        return [Row(raw, self._columns) for raw in raws]


    def fetch_all(self) -> list[Row]:
        """Returns all remaining rows and leaves the cursor DRAINED."""

        self._ensure_usable()

        if self.state is not CursorState.RESULTS_AVAILABLE:
            return []

        try:
            raws = self._raw.fetchall()
        except Exception as e:
            raise self._fail('Cursor.fetch_all()', e) from e

        self.state = CursorState.DRAINED
        return [Row(raw, self._columns) for raw in raws]


    def fetch_frame(self) -> pd.DataFrame:
        """Returns all remaining rows as a DataFrame, using the result set's column names."""
        columns:list[str] = list(self._columns)
        return pd.DataFrame([tuple(r) for r in self.fetch_all()], columns=columns)


    def __iter__(self) -> Iterator[Row]:
        """Lazily yields the remaining rows (forward-only, not restartable)."""
        while True:
            row = self.fetch_one()
            if row is None:
                return
            yield row


    # ---- Lifecycle ---- #
    def close(self) -> None:
        """Releases the driver cursor and its result buffer. Closing an already-closed cursor does nothing."""

        # Already closed
        if self._raw is None:
            return

        raw:DriverCursor = self._raw
        self._raw = None
        self._reset_results(CursorState.CLOSED)
        self.connection._forget_cursor(self)

        # NOTE: the driver may already have released the cursor along with its connection
        try:
            raw.close()
        except self.connection.driver_errors as e:
            self.connection.log_warning('Cursor.close()', f'Error when closing cursor: {e.__class__.__name__} - {e}')


    def __enter__(self) -> Cursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Cursor state={self.state.value} statement={self.statement!r}>"
