from __future__ import annotations

import re
from typing import Iterable

from batch_loader.errors import ConfigInvalidError

# plain identifier, optionally prefixed by one `schema.`
_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"
_IDENTIFIER_RE = re.compile(rf"^{_IDENT}$")
_QUALIFIED_RE = re.compile(rf"^(?:{_IDENT}\.)?{_IDENT}$")


def is_safe_identifier(name: object, *, qualified: bool = False) -> bool:
    """True if `name` can be placed into SQL text unquoted."""
    if not isinstance(name, str):
        return False
    pattern = _QUALIFIED_RE if qualified else _IDENTIFIER_RE
    return pattern.match(name) is not None


def check_identifier(name: object, *, qualified: bool = False, what: str = "identifier") -> str:
    """
    Return `name` unchanged if it is a safe SQL identifier.

    Table and column names come from external configuration and are interpolated
    into statement text, so anything outside the strict pattern is rejected
    instead of being quoted.
    """
    if not is_safe_identifier(name, qualified=qualified):
        raise ConfigInvalidError(f"invalid {what}: {name!r}")
    return name  # type: ignore[return-value]


def check_table_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ConfigInvalidError("table name cannot be empty")
    return check_identifier(name, qualified=True, what="table name")


def check_columns(names: Iterable[object], *, what: str = "field name") -> list[str]:
    """Validate every column name, collecting all violations into one error."""
    out: list[str] = []
    bad: list[str] = []
    for n in names:
        if is_safe_identifier(n):
            out.append(n)  # type: ignore[arg-type]
        else:
            bad.append(f"invalid {what}: {n!r}")
    if bad:
        raise ConfigInvalidError(bad)
    return out
