class DatabaseAccessError(Exception):
    """Base class for every error raised by the database_access package."""


class DatabaseConnectionError(DatabaseAccessError, ConnectionError):
    """Raised when a session to the given target cannot be established (unreachable store, bad location or credentials)."""

    def __init__(self, target:str, reason:BaseException|str|None=None):
        self.target = target or ""
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f'Could not connect to "{self.target}"{detail}')


class StateError(DatabaseAccessError):
    """Raised when an operation is attempted on a closed (or otherwise unusable) Connection or Cursor."""


class DatabaseNotConnected(StateError):
    """Raised when a Connection (or one of its Cursors) is used after the connection was closed."""

    def __init__(self):
        super().__init__('The database is not connected or the connection has been closed.')


class BindingMismatchError(DatabaseAccessError, ValueError):
    """Raised when the placeholders in a statement template do not match the supplied bind values."""

    def __init__(self, message:str, *, expected:int|None=None, given:int|None=None):
        self.expected = expected
        self.given = given
        super().__init__(message)


class TransactionError(DatabaseAccessError):
    """Raised when a commit or rollback is rejected, or when there is no transaction to resolve."""


class QueryError(DatabaseAccessError):
    """Raised when the store reports a failure while executing a statement (syntax, constraint, type mismatch)."""

    def __init__(self, statement:str|None, reason:BaseException|str):
        self.statement = statement
        self.reason = reason
        name = type(reason).__name__ if isinstance(reason, BaseException) else "Error"
        super().__init__(f"{name} - {reason}")


class TableDoesNotExist(DatabaseAccessError, LookupError):
    """Raised when a Connection helper tries to access a table that does not exist in the DB."""

    def __init__(self, given_table_name:str):
        self.given_table_name = given_table_name or ""
        pretty_name = f"{self.given_table_name} " if self.given_table_name else ""
        super().__init__(f"The given table {pretty_name}does not exist in the database.")


class DatabaseTypeNotSupported(DatabaseAccessError, ValueError):
    """Raised when a target or database_type does not map to one of the DatabaseType enum values."""

    def __init__(self, db_type:str|int):
        self.db_type = db_type
        super().__init__(f'The database type "{db_type}" is not supported. See the DatabaseType enum class for supported types.')
