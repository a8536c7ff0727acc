from __future__ import annotations

from typing import Any, Callable, Mapping

from batch_loader.errors import CalculatorNotFoundError
from batch_loader.mapping.types import FunctionConfig

# fn(record, **parameters) -> value
CustomFunction = Callable[..., Any]


class FunctionRegistry:
    """
    A `FunctionExecutor` dispatching on `FunctionConfig.function_name`.

    Functions are registered explicitly by whoever composes the loader:

        functions = FunctionRegistry({"upper": lambda record, field: str(record[field]).upper()})
    """

    def __init__(self, functions: Mapping[str, CustomFunction] | None = None) -> None:
        self._functions: dict[str, CustomFunction] = dict(functions or {})

    def register(self, name: str, fn: CustomFunction) -> None:
        self._functions[name] = fn

    def names(self) -> list[str]:
        return sorted(self._functions)

    def execute(self, function_config: FunctionConfig, record: Mapping[str, Any]) -> Any:
        try:
            fn = self._functions[function_config.function_name]
        except KeyError:
            raise CalculatorNotFoundError(
                f"no custom function named {function_config.function_name!r} (known: {self.names()})"
            ) from None
        return fn(record, **dict(function_config.parameters))
