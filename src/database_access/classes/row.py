from __future__ import annotations
from typing import Any, Iterable, Iterator, Sequence


class Row(tuple):
    """An immutable, ordered row of column values that also supports lookup by column name.

        - Compares (and hashes) exactly like the plain tuple of its values, e.g. Row(("Dan",), ["first_name"]) == ("Dan",)
        - row["first_name"] looks up by column name; integer indexes and slices behave like a tuple
        - If a column name appears more than once (e.g. a JOIN without aliases), name lookup returns the first match
    """

    _columns:tuple[str, ...]

    def __new__(cls, values:Iterable[Any], columns:Sequence[str]|None=None) -> Row:
        row = super().__new__(cls, values)
        cols:tuple[str, ...] = tuple(columns) if columns is not None else ()

        # Column names must line up with the values when given
        if cols and len(cols) != len(row):
            raise ValueError(f"Row has {len(row)} values but {len(cols)} column names were given")

        row._columns = cols
        return row

    def __reduce__(self):
        return (self.__class__, (tuple(self), self._columns))

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    def _index_of(self, column:str) -> int:
        try:
            return self._columns.index(column)
        except ValueError:
            raise KeyError(column) from None

    def __getitem__(self, key):
        if isinstance(key, str):
            return tuple.__getitem__(self, self._index_of(key))
        return tuple.__getitem__(self, key)

    def get(self, column:str, default:Any=None) -> Any:
        """Returns the value for [column], or [default] if the row has no such column."""
        try:
            return self[column]
        except KeyError:
            return default

    def keys(self) -> tuple[str, ...]:
        return self._columns

    def items(self) -> Iterator[tuple[str, Any]]:
        return zip(self._columns, self)

    def as_dict(self) -> dict[str, Any]:
        """Returns {column: value}; for duplicated column names the first occurrence wins."""
        out:dict[str, Any] = {}
        for col, val in zip(self._columns, self):
            out.setdefault(col, val)
        return out

    def __repr__(self) -> str:
        if not self._columns:
            return f"Row{tuple.__repr__(self)}"
        return "Row(" + ", ".join(f"{c}={v!r}" for c, v in zip(self._columns, self)) + ")"
