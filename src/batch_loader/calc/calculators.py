from __future__ import annotations

from typing import Any, Mapping, Protocol

from batch_loader.errors import ConfigInvalidError
from batch_loader.expression.evaluator import DEFAULT_SCALE, evaluate
from batch_loader.mapping.types import CalculationKind, FieldMapping, FunctionConfig

Record = Mapping[str, Any]


class ValueCalculator(Protocol):
    """Computes one target value for one record."""
    kind: CalculationKind

    def supports(self, mapping: FieldMapping) -> bool: ...
    def calculate(self, record: Record, mapping: FieldMapping) -> Any: ...


class FunctionExecutor(Protocol):
    """Runs a named custom function. Opaque to the loader."""
    def execute(self, function_config: FunctionConfig, record: Record) -> Any: ...


class _KindCalculator:
    kind: CalculationKind

    def supports(self, mapping: FieldMapping) -> bool:
        return mapping.calculation_kind is self.kind


class SourceValueCalculator(_KindCalculator):
    """Copy the source field (possibly `None`)."""
    kind = CalculationKind.source_value

    def calculate(self, record: Record, mapping: FieldMapping) -> Any:
        return record.get(mapping.source_field) if mapping.source_field else None


class ConstantValueCalculator(_KindCalculator):
    """Ignore the record, use the configured literal."""
    kind = CalculationKind.constant_value

    def calculate(self, record: Record, mapping: FieldMapping) -> Any:
        return mapping.calculation_param


class DefaultValueCalculator(_KindCalculator):
    """Source field, or the configured literal when the source is `None`/absent."""
    kind = CalculationKind.default_value

    def calculate(self, record: Record, mapping: FieldMapping) -> Any:
        v = record.get(mapping.source_field) if mapping.source_field else None
        return v if v is not None else mapping.calculation_param


class ArithmeticCalculator(_KindCalculator):
    """Evaluate the mapping's expression with the record as variable context."""
    kind = CalculationKind.arithmetic

    def __init__(self, *, scale: int = DEFAULT_SCALE) -> None:
        self.scale = scale

    def calculate(self, record: Record, mapping: FieldMapping) -> Any:
        return evaluate(mapping.calculation_param, record, scale=self.scale)


class CustomFunctionCalculator(_KindCalculator):
    kind = CalculationKind.custom_function

    def __init__(self, executor: FunctionExecutor) -> None:
        self.executor = executor

    def calculate(self, record: Record, mapping: FieldMapping) -> Any:
        fn = mapping.calculation_param
        if not isinstance(fn, FunctionConfig):
            raise ConfigInvalidError(f"{mapping.target_field}: custom_function mapping needs a function config")
        return self.executor.execute(fn, record)
