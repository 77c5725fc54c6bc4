# Standard imports
import re
import logging
import weakref
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence
import pandas as pd

# Imports for DB drivers
import mysql.connector as mysql
import psycopg2 as psql
import sqlite3 as sqlite

# Custom utils and objs
from ..utils.general import setup_logger, redact_target, parse_url_target, sqlite_path_from_target
from ..exceptions import (
    BindingMismatchError,
    DatabaseConnectionError,
    DatabaseNotConnected,
    DatabaseTypeNotSupported,
    StateError,
    TableDoesNotExist,
    TransactionError,
)
from .cursor import Cursor
from .db_cursor import DriverConnection, DriverCursor
from .database_type import DatabaseType


# Base exception classes of every supported driver
DRIVER_ERRORS:tuple[type[Exception], ...] = (sqlite.Error, psql.Error, mysql.Error)

# Define a regex for identifiers that are safe to leave unquoted
_SAFE_IDENT:re.Pattern = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Default SQLite busy timeout (seconds)
_SQLITE_DEFAULT_TIMEOUT:float = 5.0


# Connection class definition
class Connection(object):
    """An open session to a relational store (SQLite, PostgreSQL or MySQL).

        - Use it as a context manager so it is always closed, e.g. `with connect("test.db") as conn: ...`
        - Every successful statement leaves a pending transaction that must be resolved with commit() or rollback();
          closing the connection with a pending transaction rolls it back
        - Not thread-safe: use one connection per thread/worker, or serialize access to it externally
    """

    target:str                                  # The target identifier the connection was opened with
    database_type:DatabaseType                  # The DatabaseType for this instance
    cxn:DriverConnection|None                   # The driver connection object; None once closed
    in_transaction:bool                         # True while there is uncommitted work
    enable_logging:bool                         # Optional - specify whether to enable logging for this instance; defaults to True
    logger:logging.Logger                       # Logger for debug/info/etc
    driver_errors = DRIVER_ERRORS               # Driver exceptions that are translated into this package's errors


    def __init__(
            self,
            target:str,
            *,
            database_type:DatabaseType|None=None,
            username:str|None=None,
            password:str|None=None,
            host:str|None=None,
            port:int|None=None,
            timeout:float|None=None,
            enable_logging:bool=True,
            log_file_path:str='./database_access.log',
            logger_name:str='database_access_logger',
            logger_min_level:int=logging.DEBUG,
            logger_format:str="%(asctime)s - %(levelname)s: %(message)s"
        ):

        # Set the base attributes
        self.target = target
        self.enable_logging = enable_logging
        self.in_transaction = False
        self.cxn = None
        self._cursors:weakref.WeakSet[Cursor] = weakref.WeakSet()

        # Setup logging if configured
        if enable_logging:

            # Init a logger
            self.logger = setup_logger(
                log_file_path=log_file_path,
                logger_name=logger_name,
                min_level=logger_min_level,
                log_format=logger_format,
            )

        # Validate the target
        if target is None or not str(target).strip():
            error = DatabaseConnectionError(target, 'the target identifier is empty')
            self.log_error('__init__()', error)
            raise error

        # Work out the database type from the target if not given
        try:
            if database_type is None:
                database_type = DatabaseType.from_target(target)
            elif not isinstance(database_type, DatabaseType):
                raise DatabaseTypeNotSupported(database_type)
        except DatabaseTypeNotSupported as e:
            self.log_error('__init__()', e)
            raise

        self.database_type = database_type

        # Connect
        try:
            self.cxn = self._open(target, username=username, password=password, host=host, port=port, timeout=timeout)

        # Handle exceptions
        except DRIVER_ERRORS as e:
            self.log_error('__init__()', e)
            raise DatabaseConnectionError(redact_target(target), e) from e

        # Malformed targets (e.g. a non-numeric port)
        except ValueError as e:
            self.log_error('__init__()', e)
            raise DatabaseConnectionError(redact_target(target), e) from e

        self.log_debug('__init__()', f'Connected to {self.database_type.name} target "{redact_target(target)}".')


    def _open(
            self,
            target:str,
            *,
            username:str|None,
            password:str|None,
            host:str|None,
            port:int|None,
            timeout:float|None,
        ) -> DriverConnection:
        """Opens the driver connection for this instance's database type. Explicit kwargs override parts of a URL target."""

        match self.database_type:

            # MYSQL DATABASE
            case DatabaseType.MYSQL:

                # Fields from the target (URL or bare database name)
                parts = parse_url_target(target) if '://' in target else {'database': target}

                kwargs:dict[str, Any] = {
                    'database': parts.get('database'),
                    'host': host or parts.get('host') or 'localhost',
                    'port': port or parts.get('port') or self.database_type.default_port,
                    'user': username or parts.get('username'),
                    'password': password or parts.get('password'),
                }
                if timeout is not None:
                    kwargs['connection_timeout'] = int(timeout)

                # Connect (drop unset fields so the driver defaults apply)
                return mysql.connect(**{k: v for k, v in kwargs.items() if v is not None})

            # POSTGRESQL DATABASE
            case DatabaseType.POSTGRESQL:

                # URLs and libpq keyword strings go to libpq as-is; anything else is a database name
                dsn:str|None = target if ('://' in target or '=' in target) else None

                kwargs = {
                    'dbname': None if dsn else target,
                    'host': host,
                    'port': port,
                    'user': username,
                    'password': password,
                }
                if timeout is not None:
                    kwargs['connect_timeout'] = int(timeout)

                # Connect
                return psql.connect(dsn=dsn, **{k: v for k, v in kwargs.items() if v is not None})

            # SQLITE DATABASE
            case DatabaseType.SQLITE:

                # Use the given filepath (or URI) to connect
                # NOTE: autocommit mode at the driver level; _begin() opens every transaction explicitly so DDL is
                # transactional too
                path:str = sqlite_path_from_target(target)
                return sqlite.connect(
                    path,
                    isolation_level=None,
                    timeout=_SQLITE_DEFAULT_TIMEOUT if timeout is None else timeout,
                    uri=path.startswith('file:'),
                )

            # UNSUPPORTED
            case _:
                raise DatabaseTypeNotSupported(self.database_type)


    # ---- Helper functions for standardizing logging ---- #
    def _log(
        self,
        level:int,
        fmt:str,
        *args,
        exc:BaseException|None=None,
        stacklevel:int=2,
    ) -> None:
        """Helper func to standardize logging format (or do nothing if not [self.enable_logging] or not self.logger).
        Log format is: "[calling_function]: [message|Exception]" """

        # Check if enable logging is True
        if not getattr(self, "enable_logging", False): return

        # Make sure self.logger is not None
        logger:logging.Logger = getattr(self, "logger", None)
        if logger is None: return

        # Write to the log
        logger.log(level, fmt, *args, exc_info=exc, stacklevel=stacklevel)


    def log_debug(self, calling_func:str, message:str, stacklevel:int=2) -> None:
        """Logs a DEBUG message."""
        self._log(logging.DEBUG, "%s: %s", calling_func, message, stacklevel=stacklevel)


    def log_warning(self, calling_func:str, message:str, stacklevel:int=2) -> None:
        """Logs a WARNING message."""
        self._log(logging.WARNING, "%s error (non-critical): %s", calling_func, message, stacklevel=stacklevel)


    def log_error(self, calling_func:str, exception:Exception, stacklevel:int=2) -> None:
        """Logs an ERROR message."""
        self._log(logging.ERROR, "%s failed: %s - %s", calling_func, type(exception).__name__, exception, exc=exception, stacklevel=stacklevel)


    # ---- Functions for checking if the database connection is open and healthy ---- #
    @property
    def closed(self) -> bool:
        return self.cxn is None


    def _ensure_open(self) -> None:
        """Raises a DatabaseNotConnected exception (a StateError) if the connection has been closed."""
        if self.cxn is None:
            error = DatabaseNotConnected()
            self.log_error('_ensure_open()', error)
            raise error


    def _check_connection(self) -> bool:
        """Returns True if the connection is open and is healthy, False otherwise."""

        # Base case: closed
        if self.cxn is None: return False

        # Check based on db type
        match self.database_type:
            case DatabaseType.MYSQL:
                try:
                    self.cxn.ping(reconnect=False, attempts=1, delay=0)
                    return True
                except mysql.Error:
                    pass
            case DatabaseType.POSTGRESQL:
                # NOTE: psycopg2 sets closed to 1 when closed and 2 when the connection is broken
                if getattr(self.cxn, "closed", 1) == 0:
                    return True
            case DatabaseType.SQLITE:
                try:
                    self.cxn.execute('SELECT 1;')
                    return True
                except sqlite.Error:
                    pass

        # Not connected if we make it here
        return False


    def is_connected(self) -> bool:
        """Public method for checking if the DB is connected and the connection is healthy (does not raise Exceptions)."""
        return self._check_connection()


    # ---- Bookkeeping used by Cursor ---- #
    def _begin(self) -> None:
        """Opens a transaction on SQLite (which runs in driver autocommit mode) unless one is already open."""
        if self.database_type is DatabaseType.SQLITE and not self.cxn.in_transaction:
            self.cxn.execute('BEGIN')

    def _mark_pending(self) -> None:
        self.in_transaction = True

    def _forget_cursor(self, cursor:Cursor) -> None:
        self._cursors.discard(cursor)


    # ---- Cursors and transactions ---- #
    def cursor(self) -> Cursor:
        """Returns a new Cursor bound to this connection. Raises a StateError if the connection is closed."""

        # Ensure connection
        self._ensure_open()

        # MySQL cursors are buffered so that unread rows never block the next statement
        try:
            raw:DriverCursor = self.cxn.cursor(buffered=True) if self.database_type is DatabaseType.MYSQL else self.cxn.cursor()
        except DRIVER_ERRORS as e:
            self.log_error('cursor()', e)
            raise StateError(f'Could not create a cursor: {e.__class__.__name__} - {e}') from e

        cursor = Cursor(self, raw)
        self._cursors.add(cursor)
        return cursor


    def commit(self) -> None:
        """Makes every statement executed since the last commit/rollback durable.

            - Raises StateError if the connection is closed
            - Raises TransactionError if there is no pending transaction, or if the store rejects the commit (the
              transaction is then left for the caller to roll back)
        """

        # Ensure connection
        self._ensure_open()

        # Nothing to commit
        if not self.in_transaction:
            error = TransactionError('No transaction is active, nothing to commit.')
            self.log_error('commit()', error)
            raise error

        # Commit changes
        try:
            self.cxn.commit()

        # Handle exceptions
        except DRIVER_ERRORS as e:
            self.log_error('commit()', e)
            raise TransactionError(f'Commit rejected by the store: {e.__class__.__name__} - {e}') from e

        self.in_transaction = False
        self.log_debug('commit()', 'Committed transaction.')


    def rollback(self) -> None:
        """Discards every statement executed since the last commit/rollback. Raises StateError if the connection is closed."""

        # Ensure connection
        self._ensure_open()

        # Roll back changes
        try:
            self.cxn.rollback()

        # Handle exceptions
        except DRIVER_ERRORS as e:
            self.log_error('rollback()', e)
            raise TransactionError(f'Rollback rejected by the store: {e.__class__.__name__} - {e}') from e

        self.in_transaction = False
        self.log_debug('rollback()', 'Rolled back transaction.')


    @contextmanager
    def transaction(self) -> Iterator["Connection"]:
        """Context manager that commits on a clean exit and rolls back if an exception escapes the block.

        Transactions do not nest: raises TransactionError if there is already uncommitted work.
        """

        # Ensure connection
        self._ensure_open()

        if self.in_transaction:
            error = TransactionError('A transaction is already pending; nested transactions are not supported.')
            self.log_error('transaction()', error)
            raise error

        try:
            yield self

        # Undo everything from the block (the original exception always wins over a failed rollback)
        except BaseException:
            if not self.closed:
                try:
                    self.rollback()
                except TransactionError as rb:
                    self.log_warning('transaction()', f'Error when rolling back: {rb}')
            raise

        # Commit if the block did anything
        if self.in_transaction:
            self.commit()


    def close(self) -> None:
        """Releases the connection (and every cursor created from it). Closing an already-closed connection does nothing.

        A pending transaction is rolled back before the connection is released.
        """

        # Already closed
        if self.cxn is None:
            return

        # Close cursors first
        for cursor in list(self._cursors):
            cursor.close()

        cxn:DriverConnection = self.cxn
        try:

            # Resolve any pending transaction
            if self.in_transaction:
                self.log_warning('close()', 'Closing with a pending transaction - rolling back.')
                try:
                    cxn.rollback()
                except DRIVER_ERRORS as e:
                    self.log_warning('close()', f'Error when rolling back: {e.__class__.__name__} - {e}')

        # When all done
        finally:
            self.cxn = None
            self.in_transaction = False
            try:
                cxn.close()
            except DRIVER_ERRORS as e:
                self.log_warning('close()', f'Error when closing connection: {e.__class__.__name__} - {e}')

        self.log_debug('close()', f'Closed connection to "{redact_target(self.target)}".')


    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state:str = 'closed' if self.closed else ('pending' if self.in_transaction else 'open')
        return f"<Connection {self.database_type.name if hasattr(self, 'database_type') else '?'} {redact_target(self.target)!r} ({state})>"


    # ---- Standard functions ---- #
    def execute(self, statement:str, params:Sequence[Any]|Mapping[str, Any]|None=None) -> Cursor:
        """Creates a cursor, executes [statement] with [params] on it and returns it (closed again if execution fails)."""

        cursor:Cursor = self.cursor()
        try:
            return cursor.execute(statement, params)
        except Exception:
            cursor.close()
            raise


    def execute_many(self, statement:str, seq_of_params:Sequence[Sequence[Any]|Mapping[str, Any]]) -> int:
        """Executes [statement] for every set of params on a fresh cursor and returns the number of affected rows."""

        with self.cursor() as cursor:
            return cursor.execute_many(statement, seq_of_params)


    # ---- Methods for validating and quoting identifiers ---- #
    def quote_identifier(self, identifier:str) -> str:
        """Safely quote an identifier or dotted path (db.schema.table) per backend. Safe parts (regex) are left unquoted.
            - Postgres/SQLite: "part" with internal " doubled -> ""
            - MySQL: `part` with internal backticks doubled -> ``
        """

        # Clean the identifier of whitespace
        name:str = (identifier or "").strip()

        # Make sure the identifier wasn't empty or just whitespace
        if not name:
            raise ValueError("Empty identifier")

        # Strip down to parts
        parts:list[str] = [p.strip() for p in name.split(".")]

        # Check that parts are all valid
        if any(p == "" for p in parts):
            raise ValueError(f"Invalid identifier: {identifier!r}")

        # Pick the quote char based on DB type
        match self.database_type:
            case DatabaseType.POSTGRESQL | DatabaseType.SQLITE: quote = '"'
            case DatabaseType.MYSQL: quote = '`'
            case _: raise DatabaseTypeNotSupported(self.database_type)

        # Quote each part individually
        return ".".join(
            p if _SAFE_IDENT.fullmatch(p) else quote + p.replace(quote, quote * 2) + quote
            for p in parts
        )


    def _split_qualified(self, name:str) -> tuple[str|None, str]:
        """Split 'schema.table' (or just 'table') into (schema, table). Returns (None, table) if no schema is provided."""

        # Split into parts (on '.')
        parts:list[str] = (name or "").strip().split(".")

        # If no schema, return (None, [table name])
        if len(parts) == 1: return None, parts[0]

        # If more than 1 part, treat last part as table, join the rest as schema
        return ".".join(parts[:-1]), parts[-1]


    # ---- Catalog helpers ---- #
    def _catalog_query(self, statement:str, params:Sequence[Any]|None=None, column:int=0) -> list[Any]:
        """Runs a read-only catalog query and returns one column of the results.

        NOTE: the pending-transaction flag is left as it was, since catalog reads never leave work to commit. A read
        that opened its own transaction is ended again.
        """

        was_pending:bool = self.in_transaction
        try:
            with self.cursor() as cursor:
                cursor.execute(statement, params)
                return [r[column] for r in cursor.fetch_all()]
        finally:
            if not was_pending and self.cxn is not None:
                try:
                    self.cxn.rollback()
                except DRIVER_ERRORS as e:
                    self.log_warning('_catalog_query()', f'Error when ending catalog read: {e.__class__.__name__} - {e}')
            self.in_transaction = was_pending


    def table_columns(self, table_name:str) -> list[str]:
        """Return column names (unquoted) for the given table, in table order. Accepts 'schema.table'; an unknown table
        gives an empty list."""

        # Ensure connection
        self._ensure_open()

        # Get the schema and table name from the given table name
        schema, tbl = self._split_qualified(table_name)

        # Act based on DB type
        match self.database_type:

            # MYSQL (current DB if no schema)
            case DatabaseType.MYSQL:
                if schema:
                    return self._catalog_query("""
                        SELECT COLUMN_NAME
                        FROM information_schema.columns
                        WHERE TABLE_SCHEMA = ?
                        AND TABLE_NAME   = ?
                        ORDER BY ORDINAL_POSITION
                    """, (schema, tbl))
                return self._catalog_query("""
                    SELECT COLUMN_NAME
                    FROM information_schema.columns
                    WHERE TABLE_SCHEMA = DATABASE()
                    AND TABLE_NAME   = ?
                    ORDER BY ORDINAL_POSITION
                """, (tbl,))

            # POSTGRESQL (current schema if no schema)
            case DatabaseType.POSTGRESQL:
                if schema:
                    return self._catalog_query("""
                        SELECT column_name
                        FROM information_schema.columns
                        WHERE table_schema = ?
                        AND table_name   = ?
                        ORDER BY ordinal_position
                    """, (schema, tbl))
                return self._catalog_query("""
                    SELECT column_name
                    FROM information_schema.columns
                    WHERE table_schema = current_schema()
                    AND table_name   = ?
                    ORDER BY ordinal_position
                """, (tbl,))

            # SQLITE
            case DatabaseType.SQLITE:

                # PRAGMA needs the identifiers in the SQL, so use the quoting helper
                # NOTE: returned format for PRAGMA table_info columns: cid, name, type, notnull, dflt_value, pk (name is at index 1)
                prefix:str = f"{self.quote_identifier(schema)}." if schema else ""
                return self._catalog_query(f"PRAGMA {prefix}table_info({self.quote_identifier(tbl)})", column=1)

            # UNSUPPORTED
            case _:
                raise DatabaseTypeNotSupported(self.database_type)


    def table_names(self) -> list[str]:
        """Returns all *user* table names (unquoted) visible in the current DB/schema."""

        # Ensure connection
        self._ensure_open()

        # Act based on db type
        match self.database_type:

            # MYSQL (current database only; excludes views)
            case DatabaseType.MYSQL:
                return self._catalog_query("""
                    SELECT TABLE_NAME
                    FROM information_schema.tables
                    WHERE TABLE_TYPE = 'BASE TABLE'
                    AND TABLE_SCHEMA = DATABASE()
                    ORDER BY TABLE_NAME
                """)

            # POSTGRESQL (current schema only; excludes system schemas and views)
            case DatabaseType.POSTGRESQL:
                return self._catalog_query("""
                    SELECT c.relname AS table_name
                    FROM pg_catalog.pg_class c
                    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
                    WHERE c.relkind = 'r'        -- ordinary tables
                    AND n.nspname = current_schema()
                    ORDER BY c.relname
                """)

            # SQLITE (excludes SQLite internal tables)
            case DatabaseType.SQLITE:
                return self._catalog_query("""
                    SELECT name
                    FROM sqlite_master
                    WHERE type = 'table'
                    AND name NOT LIKE 'sqlite_%'
                    ORDER BY name
                """)

            # UNSUPPORTED
            case _:
                raise DatabaseTypeNotSupported(self.database_type)


    def table_exists(self, table_name:str) -> bool:
        """Returns True if the given table exists. Schema-qualified names are matched on their last part."""

        # NOTE: normalize identifiers to unqualified names by comparing only the last part (e.g. "public.users" -> "users")
        raw_name:str = (table_name or "").strip()
        last:str = raw_name.split(".")[-1]
        known:set[str] = set(self.table_names())

        return raw_name in known or last in known


    # ---- Methods for DataFrames ---- #
    def read_frame(self, statement:str, params:Sequence[Any]|Mapping[str, Any]|None=None) -> pd.DataFrame:
        """Executes a row-returning statement and returns all of its rows as a DataFrame."""

        with self.cursor() as cursor:
            return cursor.execute(statement, params).fetch_frame()


    def insert_frame(self, df:pd.DataFrame, table_name:str) -> int:
        """Inserts every row of [df] into [table_name] with a single parameterized executemany() and returns the row count.

            NOTE:
                - The df columns must be the table's columns (in any order); they are reordered to match the table
                - NaN/NA/NaT become NULL and numpy scalars are converted to plain Python values
                - Nothing is committed here; call commit() (or use transaction()) to make the rows durable
        """

        # Do nothing if given df is empty
        if df is None or df.empty:
            self.log_warning('insert_frame()', f'given an empty DataFrame - no new rows created in "{table_name}".')
            return 0

        # Ensure connection
        self._ensure_open()

        # ---- Validating given params ---- #

        # Make sure the table exists
        db_table_cols:list[str] = self.table_columns(table_name)
        if not db_table_cols:
            error = TableDoesNotExist(table_name)
            self.log_error('insert_frame()', error)
            raise error

        # Make sure the df columns are exactly the table columns
        df = df.rename(columns=str)
        if set(df.columns) != set(db_table_cols) or len(df.columns) != len(db_table_cols):
            error = BindingMismatchError(
                f'DataFrame columns do not match table columns (DF columns={list(df.columns)}, table columns={db_table_cols})',
                expected=len(db_table_cols),
                given=len(df.columns),
            )
            self.log_error('insert_frame()', error)
            raise error

        # Reorder df columns to exactly match the table
        df_ordered:pd.DataFrame = df[db_table_cols]

        # Generate the INSERT statement (placeholders are rewritten per backend by the cursor)
        cols_sql:str = ",".join(self.quote_identifier(c) for c in db_table_cols)
        placeholders:str = ",".join(["?"] * len(db_table_cols))
        statement:str = f'INSERT INTO {self.quote_identifier(table_name)} ({cols_sql}) VALUES ({placeholders})'

        # Build value tuples (missing -> None)
        val_tuples:list[tuple] = [
            tuple(None if (pd.api.types.is_scalar(v) and pd.isna(v)) else v for v in row)
            for row in df_ordered.itertuples(index=False, name=None)
        ]

        # Execute
        with self.cursor() as cursor:
            rowcount:int = cursor.execute_many(statement, val_tuples)

        inserted:int = rowcount if rowcount >= 0 else len(val_tuples)
        self.log_debug('insert_frame()', f'Inserted {inserted} rows into "{table_name}".')
        return inserted


def connect(target:str, **kwargs) -> Connection:
    """Opens a Connection to [target] (a SQLite path, ':memory:', or a sqlite://, postgresql:// or mysql:// URL).

    See Connection for the keyword arguments. Raises DatabaseConnectionError if the store cannot be reached.
    """
    return Connection(target, **kwargs)
