import re
from enum import Enum

from ..exceptions import DatabaseTypeNotSupported
from ..utils.placeholders import QMARK, PYFORMAT

# libpq "key=value" connection strings
_KEYWORD_DSN = re.compile(r"^\s*[A-Za-z_]+\s*=")


class DatabaseType(Enum):
    """Enum of Database types for standardization and type checking."""
    MYSQL = 1
    POSTGRESQL = 2
    SQLITE = 3

    @property
    def paramstyle(self) -> str:
        """The native placeholder style of this type's driver (sqlite3 -> ?, psycopg2 / mysql-connector -> %s)."""
        return QMARK if self is DatabaseType.SQLITE else PYFORMAT

    @property
    def backslash_escapes(self) -> bool:
        """MySQL treats a backslash inside a string literal as an escape char."""
        return self is DatabaseType.MYSQL

    @property
    def default_port(self) -> int|None:
        match self:
            case DatabaseType.MYSQL: return 3306
            case DatabaseType.POSTGRESQL: return 5432
            case _: return None

    @classmethod
    def from_target(cls, target:str) -> "DatabaseType":
        """Infers the DatabaseType from a target identifier's URL scheme.

            - A libpq keyword string (e.g. "dbname=app user=postgres") is PostgreSQL
            - Anything else without a scheme is a SQLite path
        """

        target = target or ''
        if '://' not in target:
            if _KEYWORD_DSN.match(target):
                return cls.POSTGRESQL
            return cls.SQLITE

        scheme:str = target.split('://', 1)[0].strip().lower()
        match scheme:
            case 'postgresql' | 'postgres':
                return cls.POSTGRESQL
            case 'mysql':
                return cls.MYSQL
            case 'sqlite' | 'file':
                return cls.SQLITE
            case _:
                raise DatabaseTypeNotSupported(scheme)
