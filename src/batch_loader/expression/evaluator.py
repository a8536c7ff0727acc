from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Mapping

from batch_loader.errors import ExpressionParseError, InvalidNumericValueError
from batch_loader.expression.nodes import WORKING_PRECISION
from batch_loader.expression.parser import parse_expression, tokenize

DEFAULT_SCALE = 2


def quantize_scale(value: Decimal, scale: int = DEFAULT_SCALE) -> Decimal:
    """Round half-up to `scale` fractional digits, keeping every integer digit."""
    if scale < 0:
        raise ValueError(f"scale must be >= 0, got {scale}")
    try:
        with localcontext() as ctx:
            ctx.prec = max(WORKING_PRECISION, value.adjusted() + scale + 2)
            return value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidNumericValueError(f"{value} cannot be represented with scale {scale}") from None


def evaluate(expression: str, context: Mapping[str, Any], *, scale: int = DEFAULT_SCALE) -> Decimal:
    """
    Evaluate an arithmetic expression against one record.

    >>> evaluate("(2+3)*4", {})
    Decimal('20.00')
    >>> evaluate("price * qty", {"price": "1.005", "qty": 2})
    Decimal('2.01')

    Raises:
    - `ExpressionParseError` on malformed input,
    - `FieldNotFoundError` when an identifier is not a key of `context`,
    - `InvalidNumericValueError` when a field value is not numeric,
    - `DivideByZeroError` on a zero divisor.
    """
    if not isinstance(expression, str):
        raise ExpressionParseError(f"expression must be a string, got {type(expression).__name__}")
    tree = parse_expression(expression)
    return quantize_scale(tree.evaluate(context), scale)


def extract_field_names(expression: str) -> frozenset[str]:
    """Every field an expression refers to, without evaluating (or fully parsing) it."""
    return frozenset(t.text for t in tokenize(expression) if t.kind == "ident")
