from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from batch_loader.calc.calculators import (
    ArithmeticCalculator,
    ConstantValueCalculator,
    CustomFunctionCalculator,
    DefaultValueCalculator,
    FunctionExecutor,
    SourceValueCalculator,
    ValueCalculator,
)
from batch_loader.calc.functions import FunctionRegistry
from batch_loader.errors import CalculatorNotFoundError, ConfigInvalidError, RequiredFieldMissingError
from batch_loader.expression.evaluator import DEFAULT_SCALE
from batch_loader.mapping.types import CalculationKind, FieldMapping

# kinds whose value comes from the source record, so a missing field can be fatal
_SOURCE_KINDS = (CalculationKind.source_value, CalculationKind.default_value)


class CalculatorRegistry:
    """
    A registry that assigns each `CalculationKind` exactly one calculator.

    The table is built once from the calculators handed in. Lookups are a dict
    access, and an unregistered kind is a configuration bug (`CalculatorNotFoundError`),
    never a data problem.
    """

    def __init__(self, calculators: Iterable[ValueCalculator]) -> None:
        table: dict[CalculationKind, ValueCalculator] = {}
        for c in calculators:
            if c.kind in table:
                raise ConfigInvalidError(f"calculator for {c.kind.value} registered twice")
            table[c.kind] = c
        self._table = table

    @property
    def kinds(self) -> frozenset[CalculationKind]:
        return frozenset(self._table)

    def resolve(self, kind: CalculationKind) -> ValueCalculator:
        try:
            return self._table[kind]
        except KeyError:
            raise CalculatorNotFoundError(f"no calculator registered for {getattr(kind, 'value', kind)!r}") from None

    def compute(self, calculator: ValueCalculator, record: Mapping[str, Any], mapping: FieldMapping) -> Any:
        """
        Compute one target value.

        Required mappings fail with `RequiredFieldMissingError` when the source
        value is absent (or `None`) and no default applies.
        """
        if mapping.is_required and mapping.calculation_kind in _SOURCE_KINDS:
            missing = mapping.source_field is None or record.get(mapping.source_field) is None
            has_default = (
                mapping.calculation_kind is CalculationKind.default_value and mapping.calculation_param is not None
            )
            if missing and not has_default:
                raise RequiredFieldMissingError(
                    f"{mapping.target_field}: required source field {mapping.source_field!r} is missing"
                )
        return calculator.calculate(record, mapping)

    def transform_record(self, record: Mapping[str, Any], mappings: Sequence[FieldMapping]) -> dict[str, Any]:
        """`{target_field: value}` for one record, in mapping order."""
        return {m.target_field: self.compute(self.resolve(m.calculation_kind), record, m) for m in mappings}

    def transform(self, records: Iterable[Mapping[str, Any]], mappings: Sequence[FieldMapping]) -> list[dict[str, Any]]:
        return [self.transform_record(r, mappings) for r in records]


def default_registry(
    function_executor: FunctionExecutor | None = None,
    *,
    scale: int = DEFAULT_SCALE,
) -> CalculatorRegistry:
    """Registry with one calculator per kind. Custom functions go to `function_executor`."""
    return CalculatorRegistry(
        [
            SourceValueCalculator(),
            ConstantValueCalculator(),
            DefaultValueCalculator(),
            ArithmeticCalculator(scale=scale),
            CustomFunctionCalculator(function_executor or FunctionRegistry()),
        ]
    )
