from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence

from batch_loader.db.identifiers import check_identifier
from batch_loader.errors import ConfigInvalidError, FieldNotFoundError
from batch_loader.mapping.types import ConditionConfig, ConditionOperator, in_list_elements

# type tags, as they appear in persisted mappings
_TEXT_TYPES = {"STRING", "VARCHAR", "CHAR", "TEXT"}
_NUMERIC_TYPES = {"INTEGER", "INT", "BIGINT", "LONG", "DOUBLE", "FLOAT", "DECIMAL", "NUMERIC"}
_DATETIME_TYPES = {"DATETIME", "TIMESTAMP"}


def _quote(s: str) -> str:
    return "'" + s.replace("'", "''") + "'"


def format_literal(value: Any, type_tag: str | None = None) -> str:
    """
    Render a Python value as a SQL literal, guided by the mapping's type tag.

    Only for literal (non-parameterized) single-row statements; batch statements
    always bind values as parameters.
    """
    if value is None:
        return "NULL"
    tag = (type_tag or "").strip().upper()

    if tag in _NUMERIC_TYPES:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        # a numeric tag with a non-numeric value must not reach the SQL text unquoted
        try:
            return str(Decimal(str(value).strip()))
        except ArithmeticError:
            return _quote(str(value))
    if tag == "BOOLEAN":
        if isinstance(value, str):
            return "1" if value.strip().lower() in ("1", "true", "t", "yes", "y") else "0"
        return "1" if value else "0"
    if tag == "DATE":
        if isinstance(value, (date, datetime)):
            return _quote(value.strftime("%Y-%m-%d"))
        return _quote(str(value))
    if tag in _DATETIME_TYPES:
        if isinstance(value, datetime):
            return _quote(value.strftime("%Y-%m-%d %H:%M:%S"))
        return _quote(str(value))
    if tag in _TEXT_TYPES or tag:
        return _quote(str(value))

    # untagged: infer from the Python type
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return _quote(value.strftime("%Y-%m-%d %H:%M:%S"))
    if isinstance(value, date):
        return _quote(value.isoformat())
    return _quote(str(value))


def condition_key(index: int, element: int | None = None) -> str:
    """Parameter key for condition `index` (and IN-list `element`)."""
    return f"__cond_{index}" if element is None else f"__cond_{index}_{element}"


def render_condition(condition: ConditionConfig, index: int, *, placeholder: str = "%s") -> tuple[str, list[str]]:
    """
    Render one condition into a parameterized fragment.

    Returns `(fragment, keys)` where `keys` name, in order, the parameters the
    fragment's placeholders expect (see `resolve_condition_params`).
    A literal IN list gets one placeholder per element. A `${field}` IN value
    binds one scalar per row (`col IN (%s)`), since a list length is only known per row.
    """
    col = check_identifier(condition.field_name, what="condition field")
    op = condition.operator

    if not op.takes_value:
        return f"{col} {op.value}", []

    if op is ConditionOperator.in_ and condition.placeholder_field is None:
        n = len(in_list_elements(condition.value))
        keys = [condition_key(index, j) for j in range(n)]
        return f"{col} IN ({', '.join(placeholder for _ in keys)})", keys

    if op is ConditionOperator.in_:
        return f"{col} IN ({placeholder})", [condition_key(index)]

    return f"{col} {op.value} {placeholder}", [condition_key(index)]


def resolve_condition_params(conditions: Sequence[ConditionConfig], record: Mapping[str, Any]) -> dict[str, Any]:
    """
    Parameter values for every rendered condition, for one source record.

    `${field}` placeholders read the record and fail with `FieldNotFoundError`
    when the field is absent, and a list read for an IN condition is rejected.
    LIKE values match as substrings (`%value%`).
    """
    out: dict[str, Any] = {}
    for i, c in enumerate(conditions):
        if not c.operator.takes_value:
            continue

        ref = c.placeholder_field
        if ref is not None:
            if ref not in record:
                raise FieldNotFoundError(f"condition on {c.field_name}: record has no field {ref!r}")
            value = record[ref]
            if c.operator is ConditionOperator.in_ and isinstance(value, (list, tuple, set, frozenset)):
                # a driver would adapt it to one array value, not a membership list
                raise ConfigInvalidError(
                    f"condition on {c.field_name}: IN value from {ref!r} must be a single value, got a list"
                )
        else:
            value = c.value

        if c.operator is ConditionOperator.in_ and ref is None:
            for j, v in enumerate(in_list_elements(value)):
                out[condition_key(i, j)] = v
        elif c.operator is ConditionOperator.like:
            out[condition_key(i)] = f"%{value}%"
        else:
            out[condition_key(i)] = value
    return out
