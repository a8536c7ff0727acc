from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Mapping, Protocol

from batch_loader.errors import DivideByZeroError, FieldNotFoundError, InvalidNumericValueError

# working precision for every intermediate step
WORKING_PRECISION = 50
# fractional digits kept on each intermediate division, before the final rounding
DIVISION_SCALE = 10
_DIVISION_Q = Decimal(1).scaleb(-DIVISION_SCALE)


class Operator(str, Enum):
    add = "+"
    sub = "-"
    mul = "*"
    div = "/"


def to_decimal(value: Any, *, name: str) -> Decimal:
    """
    Coerce a record value to `Decimal`.

    `None` counts as zero. Floats go through `str` so `0.1` stays `0.1`.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, bool):
        raise InvalidNumericValueError(f"{name}: boolean is not numeric ({value!r})")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidNumericValueError(f"{name}: not a number ({value!r})") from None
    if not d.is_finite():
        raise InvalidNumericValueError(f"{name}: not a finite number ({value!r})")
    return d


class Expression(Protocol):
    def evaluate(self, context: Mapping[str, Any]) -> Decimal: ...
    def field_names(self) -> frozenset[str]: ...


@dataclass(frozen=True, slots=True)
class Number:
    value: Decimal

    def evaluate(self, context: Mapping[str, Any]) -> Decimal:
        return self.value

    def field_names(self) -> frozenset[str]:
        return frozenset()

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, slots=True)
class Field:
    """A reference to a record field, looked up when evaluated."""
    name: str

    def evaluate(self, context: Mapping[str, Any]) -> Decimal:
        if self.name not in context:
            raise FieldNotFoundError(f"field {self.name!r} not found in record")
        return to_decimal(context[self.name], name=self.name)

    def field_names(self) -> frozenset[str]:
        return frozenset((self.name,))

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: Operator
    left: Expression
    right: Expression

    def evaluate(self, context: Mapping[str, Any]) -> Decimal:
        left = self.left.evaluate(context)
        right = self.right.evaluate(context)
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            if self.op is Operator.add:
                return left + right
            if self.op is Operator.sub:
                return left - right
            if self.op is Operator.mul:
                return left * right
            if right == 0:
                raise DivideByZeroError(f"division by zero in {self}")
            try:
                return (left / right).quantize(_DIVISION_Q, rounding=ROUND_HALF_UP)
            except InvalidOperation:
                raise InvalidNumericValueError(f"result of {self} exceeds working precision") from None

    def field_names(self) -> frozenset[str]:
        return self.left.field_names() | self.right.field_names()

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"
