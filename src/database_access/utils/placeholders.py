"""Scanning, checking and rewriting of bind placeholders in statement templates.

Only placeholder tokens are ever rewritten: bind values are always handed to the driver separately, so a value can never
end up as part of the statement text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from ..exceptions import BindingMismatchError


# DB-API paramstyles
QMARK:str = 'qmark'          # ?
FORMAT:str = 'format'        # %s
NAMED:str = 'named'          # :name
PYFORMAT:str = 'pyformat'    # %(name)s

_POSITIONAL:frozenset[str] = frozenset({QMARK, FORMAT})
_PERCENT_STYLES:frozenset[str] = frozenset({FORMAT, PYFORMAT})

_IDENT:re.Pattern = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_PYFORMAT_NAME:re.Pattern = re.compile(r"%\(([A-Za-z_][A-Za-z0-9_]*)\)s")


@dataclass(frozen=True)
class Placeholder:
    """A single placeholder token found in a template; [start, end) are offsets into the template text."""
    style:str
    name:str|None
    start:int
    end:int


@dataclass(frozen=True)
class ParsedTemplate:
    """A statement template along with the placeholder tokens found in it (in order of appearance)."""
    text:str
    placeholders:tuple[Placeholder, ...]

    @property
    def styles(self) -> set[str]:
        return {p.style for p in self.placeholders}

    @property
    def is_named(self) -> bool:
        return bool(self.placeholders) and self.placeholders[0].style not in _POSITIONAL

    @property
    def names(self) -> list[str]:
        """Unique placeholder names, in order of first appearance."""
        seen:list[str] = []
        for p in self.placeholders:
            if p.name is not None and p.name not in seen:
                seen.append(p.name)
        return seen


def _skip_quoted(text:str, start:int, quote:str, backslash_escapes:bool=False) -> int:
    """Returns the offset just past the quoted section opened at [start]. A doubled quote char is an escaped quote.

    With [backslash_escapes] (MySQL), a backslash inside a string literal escapes the next char.
    """
    i:int = start + 1
    n:int = len(text)
    while i < n:
        if backslash_escapes and quote != "`" and text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            if i + 1 < n and text[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1

    # Unterminated - the rest of the text belongs to the quoted section
    return n


def parse_template(template:str, backslash_escapes:bool=False) -> ParsedTemplate:
    """Finds every placeholder token in [template], skipping string literals, quoted identifiers and comments.

        NOTE:
            - '%%' is a literal percent sign and '::' is a PostgreSQL cast, neither is a placeholder
            - This is a tokenizer for placeholders only, it does not validate the SQL itself
            - [backslash_escapes] treats \\x inside quoted literals as an escaped char, as MySQL does
    """

    if not isinstance(template, str):
        raise TypeError(f"Statement template must be a str, not {type(template).__name__}")

    found:list[Placeholder] = []
    i:int = 0
    n:int = len(template)

    while i < n:
        ch:str = template[i]

        # Quoted literals and identifiers
        if ch in ("'", '"', '`'):
            i = _skip_quoted(template, i, ch, backslash_escapes)
            continue

        # Line comments
        if template.startswith('--', i):
            nl:int = template.find('\n', i)
            i = n if nl == -1 else nl + 1
            continue

        # Block comments
        if template.startswith('/*', i):
            end:int = template.find('*/', i + 2)
            i = n if end == -1 else end + 2
            continue

        # qmark
        if ch == '?':
            found.append(Placeholder(QMARK, None, i, i + 1))
            i += 1
            continue

        # format / pyformat (or an escaped percent)
        if ch == '%':
            if template.startswith('%%', i):
                i += 2
                continue
            if template.startswith('%s', i):
                found.append(Placeholder(FORMAT, None, i, i + 2))
                i += 2
                continue
            m = _PYFORMAT_NAME.match(template, i)
            if m:
                found.append(Placeholder(PYFORMAT, m.group(1), i, m.end()))
                i = m.end()
                continue
            i += 1
            continue

        # named (or a cast)
        if ch == ':':
            if template.startswith('::', i):
                i += 2
                continue
            m = _IDENT.match(template, i + 1)
            if m:
                found.append(Placeholder(NAMED, m.group(0), i, m.end()))
                i = m.end()
                continue

        i += 1

    return ParsedTemplate(template, tuple(found))


def normalize_value(value:Any) -> Any:
    """Converts numpy/pandas scalars into the plain Python values DB drivers know how to bind."""
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    return value


def check_binding(parsed:ParsedTemplate, values:Sequence[Any]|Mapping[str, Any]|None) -> None:
    """Raises a BindingMismatchError unless [values] matches the placeholders of [parsed] exactly."""

    # Strings are sequences, but never a valid container of bind values
    if isinstance(values, (str, bytes, bytearray)):
        raise BindingMismatchError(f"Bind values must be a sequence or a mapping, not {type(values).__name__}")

    styles:set[str] = parsed.styles

    # Mixed styles cannot be bound unambiguously
    if len(styles) > 1:
        raise BindingMismatchError(f"Mixed placeholder styles in statement: {sorted(styles)}")

    # No placeholders: only an empty container (or None) is allowed
    if not parsed.placeholders:
        given:int = 0 if values is None else len(values)
        if given:
            raise BindingMismatchError(f"Statement has no placeholders but {given} value(s) were given", expected=0, given=given)
        return

    # Named placeholders need a mapping with exactly the same keys
    if parsed.is_named:
        if not isinstance(values, Mapping):
            raise BindingMismatchError(
                f"Statement uses named placeholders {parsed.names} but {type(values).__name__} was given",
                expected=len(parsed.names),
                given=None if values is None else len(values),
            )
        missing:list[str] = [n for n in parsed.names if n not in values]
        extra:list[str] = [k for k in values if k not in parsed.names]
        if missing or extra:
            raise BindingMismatchError(
                f"Named bind values do not match placeholders (missing={missing}, unexpected={extra})",
                expected=len(parsed.names),
                given=len(values),
            )
        return

    # Positional placeholders need a sequence with exactly the same length
    if values is None or isinstance(values, Mapping) or not isinstance(values, Sequence):
        raise BindingMismatchError(
            f"Statement uses {len(parsed.placeholders)} positional placeholder(s) but {type(values).__name__} was given",
            expected=len(parsed.placeholders),
        )
    if len(values) != len(parsed.placeholders):
        raise BindingMismatchError(
            f"Statement has {len(parsed.placeholders)} placeholder(s) but {len(values)} value(s) were given",
            expected=len(parsed.placeholders),
            given=len(values),
        )


def _render(parsed:ParsedTemplate, paramstyle:str) -> str:
    """Rebuilds the template with every placeholder token rewritten for [paramstyle]."""

    source_is_percent:bool = bool(parsed.styles & _PERCENT_STYLES)
    target_is_percent:bool = paramstyle in _PERCENT_STYLES

    # Fix literal percent signs in the text between tokens when moving in or out of %-formatting
    def text(segment:str) -> str:
        if source_is_percent and not target_is_percent:
            return segment.replace('%%', '%')
        if target_is_percent and not source_is_percent:
            return segment.replace('%', '%%')
        return segment

    out:list[str] = []
    pos:int = 0
    for p in parsed.placeholders:
        out.append(text(parsed.text[pos:p.start]))
        if p.name is None:
            out.append('?' if paramstyle == QMARK else '%s')
        else:
            out.append(f':{p.name}' if paramstyle in (QMARK, NAMED) else f'%({p.name})s')
        pos = p.end
    out.append(text(parsed.text[pos:]))
    return ''.join(out)


def prepare_statement(
        template:str,
        values:Sequence[Any]|Mapping[str, Any]|None,
        paramstyle:str,
        *,
        backslash_escapes:bool=False,
    ) -> tuple[str, tuple[Any, ...]|dict[str, Any]|None]:
    """Checks [values] against [template] and returns (statement, params) ready to hand to a driver using [paramstyle].

        NOTE:
            - params is None when the template has no placeholders, and the template is then returned verbatim
            - Positional values come back as a tuple and named values as a dict, with numpy/pandas scalars normalized
    """

    parsed:ParsedTemplate = parse_template(template, backslash_escapes)
    check_binding(parsed, values)

    # Nothing to bind
    if not parsed.placeholders:
        return template, None

    # Named values
    if parsed.is_named:
        params:dict[str, Any] = {name: normalize_value(values[name]) for name in parsed.names}
        return _render(parsed, paramstyle), params

    # Positional values
    return _render(parsed, paramstyle), tuple(normalize_value(v) for v in values)
