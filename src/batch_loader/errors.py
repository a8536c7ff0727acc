from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Typed failure classifications."""
    config_not_found = "config_not_found"
    config_invalid = "config_invalid"
    required_field_missing = "required_field_missing"
    unsupported_operation = "unsupported_operation"
    calculator_not_found = "calculator_not_found"
    expression_parse_error = "expression_parse_error"
    field_not_found = "field_not_found"
    invalid_numeric = "invalid_numeric"
    divide_by_zero = "divide_by_zero"
    batch_too_large = "batch_too_large"
    execution_failed = "execution_failed"
    unknown = "unknown"


class LoadError(Exception):
    """
    Base of every failure raised by the loader.

    `batch_number` is filled in by the orchestrator (1-based) when the error
    aborted a load in transactional mode.
    """
    code: ErrorCode = ErrorCode.unknown

    def __init__(self, detail: str, *, batch_number: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.batch_number = batch_number

    def __str__(self) -> str:
        if self.batch_number is None:
            return f"{self.code.value}: {self.detail}"
        return f"{self.code.value}: batch {self.batch_number}: {self.detail}"


class ConfigNotFoundError(LoadError):
    code = ErrorCode.config_not_found


class ConfigInvalidError(LoadError):
    """Raised on config/statement validation, `violations` lists every broken rule."""
    code = ErrorCode.config_invalid

    def __init__(self, violations: str | list[str], *, batch_number: int | None = None) -> None:
        if isinstance(violations, str):
            violations = [violations]
        self.violations = list(violations)
        super().__init__("; ".join(self.violations), batch_number=batch_number)


class RequiredFieldMissingError(LoadError):
    code = ErrorCode.required_field_missing


class UnsupportedOperationError(LoadError):
    code = ErrorCode.unsupported_operation


class CalculatorNotFoundError(LoadError):
    code = ErrorCode.calculator_not_found


class ExpressionParseError(LoadError):
    code = ErrorCode.expression_parse_error


class FieldNotFoundError(LoadError):
    code = ErrorCode.field_not_found


class InvalidNumericValueError(LoadError):
    code = ErrorCode.invalid_numeric


class DivideByZeroError(LoadError):
    code = ErrorCode.divide_by_zero


class BatchTooLargeError(LoadError):
    code = ErrorCode.batch_too_large


class ExecutionFailedError(LoadError):
    code = ErrorCode.execution_failed


class UnknownLoadError(LoadError):
    """Wraps anything unexpected. The original exception is kept as `__cause__`."""
    code = ErrorCode.unknown
