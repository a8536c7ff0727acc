from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence, TypeVar

from batch_loader.db.identifiers import is_safe_identifier
from batch_loader.errors import ConfigInvalidError


class LoadKind(str, Enum):
    """The mutation category of a load configuration."""
    insert = "insert"
    update = "update"
    upsert = "upsert"
    delete = "delete"


class CalculationKind(str, Enum):
    """How a target field's value is derived from a source record."""
    source_value = "source_value"
    constant_value = "constant_value"
    default_value = "default_value"
    arithmetic = "arithmetic"
    custom_function = "custom_function"


class ConditionOperator(str, Enum):
    eq = "="
    ne = "!="
    gt = ">"
    lt = "<"
    ge = ">="
    le = "<="
    like = "LIKE"
    in_ = "IN"
    is_null = "IS NULL"
    is_not_null = "IS NOT NULL"

    @property
    def takes_value(self) -> bool:
        return self not in (ConditionOperator.is_null, ConditionOperator.is_not_null)


class ConditionKind(str, Enum):
    where = "WHERE"     # the only kind currently supported


class UpsertMode(str, Enum):
    """
    `native` builds one insert-with-conflict-resolution statement per batch.
    `insert_then_update` retries a failed batch insert as a whole-batch update.
    """
    native = "native"
    insert_then_update = "insert_then_update"


# operators (and legacy kind names) accepted from persisted configs
_ALIASES: dict[str, str] = {
    "<>": "!=",
    "==": "=",
    "arithmetic_operation": "arithmetic",
    "source": "source_value",
    "constant": "constant_value",
    "default": "default_value",
    "function": "custom_function",
}

E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value: Any) -> E:
    """Coerce a persisted value into `enum_cls`, matching names and values case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    s = str(value).strip()
    s = _ALIASES.get(s.lower(), s)
    for member in enum_cls:
        if s.lower() in (str(member.value).lower(), member.name.lower().rstrip("_")):
            return member
    raise ConfigInvalidError(f"unknown {enum_cls.__name__} {value!r}")


_PLACEHOLDER_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def in_list_elements(value: Any) -> list[Any]:
    """Elements of a literal IN value: a list, a comma-separated string or one scalar."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return [value]


@dataclass(frozen=True, slots=True)
class FunctionConfig:
    """Parameter of a `custom_function` mapping: which function, with which keyword params."""
    function_name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> FunctionConfig:
        name = raw.get("function_name") or raw.get("name")
        if not name:
            raise ConfigInvalidError("custom function config needs a function_name")
        return cls(function_name=str(name), parameters=dict(raw.get("parameters") or {}))


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """
    One source field -> one target field rule.

    `calculation_param` depends on `calculation_kind`:
    - constant/default: the literal value,
    - arithmetic: the expression string,
    - custom_function: a `FunctionConfig`.
    """
    source_field: str | None
    target_field: str
    calculation_kind: CalculationKind = CalculationKind.source_value
    calculation_param: Any = None
    source_type: str | None = None
    target_type: str | None = None
    is_primary: bool = False
    is_required: bool = False

    def problems(self) -> list[str]:
        """Every rule this mapping violates (empty when valid)."""
        out: list[str] = []
        if not is_safe_identifier(self.target_field):
            out.append(f"invalid target field: {self.target_field!r}")

        kind = self.calculation_kind
        if kind in (CalculationKind.source_value, CalculationKind.default_value) and not self.source_field:
            out.append(f"{self.target_field}: {kind.value} mapping needs a source field")
        if kind is CalculationKind.arithmetic and (
            not isinstance(self.calculation_param, str) or not self.calculation_param.strip()
        ):
            out.append(f"{self.target_field}: arithmetic mapping needs an expression")
        if kind is CalculationKind.custom_function and not isinstance(self.calculation_param, FunctionConfig):
            out.append(f"{self.target_field}: custom_function mapping needs a function config")
        return out

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> FieldMapping:
        kind = parse_enum(CalculationKind, raw.get("calculation_kind", CalculationKind.source_value))
        param = raw.get("calculation_param")
        if kind is CalculationKind.custom_function and isinstance(param, Mapping):
            param = FunctionConfig.from_mapping(param)
        target = raw.get("target_field") or raw.get("source_field")
        return cls(
            source_field=raw.get("source_field"),
            target_field=str(target) if target is not None else "",
            calculation_kind=kind,
            calculation_param=param,
            source_type=raw.get("source_type"),
            target_type=raw.get("target_type"),
            is_primary=bool(raw.get("is_primary", False)),
            is_required=bool(raw.get("is_required", False)),
        )


@dataclass(frozen=True, slots=True)
class ConditionConfig:
    """
    A filter used to build WHERE clauses for update/delete.

    `value` is either a literal or a `${field}` placeholder naming a field of the
    source record, resolved per row.
    """
    field_name: str
    operator: ConditionOperator = ConditionOperator.eq
    value: Any = None
    kind: ConditionKind = ConditionKind.where

    @property
    def placeholder_field(self) -> str | None:
        if not isinstance(self.value, str):
            return None
        m = _PLACEHOLDER_RE.match(self.value.strip())
        return m.group(1) if m else None

    def problems(self) -> list[str]:
        out: list[str] = []
        if not is_safe_identifier(self.field_name):
            out.append(f"invalid condition field: {self.field_name!r}")
        if self.operator.takes_value and self.value is None:
            out.append(f"condition on {self.field_name} ({self.operator.value}) needs a value")
        if (
            self.operator is ConditionOperator.in_
            and self.value is not None
            and self.placeholder_field is None
            and not in_list_elements(self.value)
        ):
            out.append(f"condition on {self.field_name}: IN list cannot be empty")
        return out

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ConditionConfig:
        return cls(
            field_name=str(raw.get("field_name", "")),
            operator=parse_enum(ConditionOperator, raw.get("operator", "=")),
            value=raw.get("value", raw.get("condition_value")),
            kind=parse_enum(ConditionKind, raw.get("kind", raw.get("condition_type", "WHERE"))),
        )


@dataclass(frozen=True, slots=True)
class LoadConfig:
    """
    A complete, immutable load configuration.

    Constructed from persisted configuration before a run and never mutated
    during it. `validate()` must pass before any statement is executed.
    """
    config_id: str
    table_name: str
    load_kind: LoadKind
    field_mappings: Sequence[FieldMapping]
    conditions: Sequence[ConditionConfig] = ()
    batch_size: int = 500
    transactional: bool = False
    dialect: str = "postgresql"
    upsert_mode: UpsertMode = UpsertMode.native
    generated_key: str | None = None    # DB generated key column for keyed inserts

    def __post_init__(self) -> None:
        # freeze sequences so a config can be shared read-only
        object.__setattr__(self, "field_mappings", tuple(self.field_mappings))
        object.__setattr__(self, "conditions", tuple(self.conditions))

    @property
    def target_fields(self) -> list[str]:
        return [m.target_field for m in self.field_mappings]

    @property
    def primary_keys(self) -> list[str]:
        return [m.target_field for m in self.field_mappings if m.is_primary]

    @property
    def key_column(self) -> str | None:
        """Column whose generated values a keyed insert returns."""
        if self.generated_key:
            return self.generated_key
        pks = self.primary_keys
        return pks[0] if pks else None

    def validate(self) -> None:
        """Raise `ConfigInvalidError` listing every violated rule."""
        violations: list[str] = []
        if not isinstance(self.table_name, str) or not self.table_name.strip():
            violations.append("table name cannot be empty")
        elif not is_safe_identifier(self.table_name, qualified=True):
            violations.append(f"invalid table name: {self.table_name!r}")

        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size <= 0:
            violations.append(f"batch size must be a positive integer, got {self.batch_size!r}")

        if not self.field_mappings:
            violations.append("field mappings cannot be empty")
        for m in self.field_mappings:
            violations.extend(m.problems())

        seen: set[str] = set()
        for t in self.target_fields:
            if t in seen:
                violations.append(f"duplicate target field: {t}")
            seen.add(t)

        if self.load_kind in (LoadKind.update, LoadKind.upsert, LoadKind.delete) and not self.primary_keys:
            violations.append(f"{self.load_kind.value} requires at least one primary field mapping")

        for c in self.conditions:
            violations.extend(c.problems())

        if self.generated_key is not None and not is_safe_identifier(self.generated_key):
            violations.append(f"invalid generated key column: {self.generated_key!r}")

        if not str(self.dialect or "").strip():
            violations.append("dialect cannot be empty")

        if violations:
            raise ConfigInvalidError(violations)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LoadConfig:
        """Build from a plain dict (e.g. a JSON config document)."""
        if not isinstance(raw, Mapping):
            raise ConfigInvalidError(f"load config must be an object, got {type(raw).__name__}")
        return cls(
            config_id=str(raw.get("config_id", raw.get("id", ""))),
            table_name=str(raw.get("table_name", "")),
            load_kind=parse_enum(LoadKind, raw.get("load_kind", "insert")),
            field_mappings=[FieldMapping.from_mapping(m) for m in raw.get("field_mappings") or []],
            conditions=[ConditionConfig.from_mapping(c) for c in raw.get("conditions") or []],
            batch_size=raw.get("batch_size", 500),
            transactional=bool(raw.get("transactional", False)),
            dialect=str(raw.get("dialect", "postgresql")),
            upsert_mode=parse_enum(UpsertMode, raw.get("upsert_mode", UpsertMode.native)),
            generated_key=raw.get("generated_key"),
        )
