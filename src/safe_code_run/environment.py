"""Capability table for sandboxed code.

The mapping returned by `build_environment` is used as the complete global
scope of the executed code. Nothing else is reachable: there is no import
system and `__builtins__` is replaced by an explicit allow-list.
"""

from __future__ import annotations

import builtins
import json
import keyword
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Mapping
from urllib.parse import quote, unquote

from .host import host_bindings

SANDBOX_MODULE_NAME = "__sandbox__"

SAFE_BUILTIN_NAMES: tuple[str, ...] = (
    "abs",
    "all",
    "any",
    "ascii",
    "bin",
    "bool",
    "bytearray",
    "bytes",
    "callable",
    "chr",
    "classmethod",
    "complex",
    "dict",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "format",
    "frozenset",
    "hash",
    "hex",
    "int",
    "isinstance",
    "issubclass",
    "iter",
    "len",
    "list",
    "map",
    "max",
    "min",
    "next",
    "oct",
    "ord",
    "pow",
    "property",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "slice",
    "sorted",
    "staticmethod",
    "str",
    "sum",
    "super",
    "tuple",
    "zip",
    "Ellipsis",
    "NotImplemented",
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "NameError",
    "NotImplementedError",
    "OverflowError",
    "RuntimeError",
    "StopIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

_CONSOLE_METHODS = ("log", "info", "warn", "warning", "error", "debug", "trace")

_RE_NAMES = (
    "search",
    "match",
    "fullmatch",
    "findall",
    "finditer",
    "sub",
    "subn",
    "split",
    "escape",
    "error",
    "A",
    "ASCII",
    "I",
    "IGNORECASE",
    "M",
    "MULTILINE",
    "S",
    "DOTALL",
    "X",
    "VERBOSE",
)


class ResultSlot:
    """Single value holder written by `set_result`; last write wins.

    Example:
        ```python
        slot = ResultSlot()
        slot.set(3)
        assert slot.read() == 3
        ```
    """

    __slots__ = ("_value", "_is_set")

    def __init__(self) -> None:
        """Start in the unset state.

        Example:
            ```python
            slot = ResultSlot()
            ```
        """
        self._value: Any = None
        self._is_set = False

    def set(self, value: Any) -> None:
        """Overwrite the held value.

        Example:
            ```python
            slot.set({"answer": 42})
            ```
        """
        self._value = value
        self._is_set = True

    @property
    def is_set(self) -> bool:
        """Return whether `set` was called at least once.

        Example:
            ```python
            assert not ResultSlot().is_set
            ```
        """
        return self._is_set

    def read(self) -> Any:
        """Return the held value, or None when never set.

        Example:
            ```python
            value = slot.read()
            ```
        """
        return self._value


@dataclass(slots=True)
class SandboxEnvironment:
    """Bindings plus the per-run output log and result slot.

    Example:
        ```python
        env = build_environment({"x": 1})
        ```
    """

    bindings: dict[str, Any]
    logs: list[tuple[Any, ...]] = field(default_factory=list)
    result: ResultSlot = field(default_factory=ResultSlot)


def _public_namespace(source: Any, names: tuple[str, ...] | None = None) -> SimpleNamespace:
    """Copy public attributes of a module into a fresh namespace.

    Example:
        ```python
        ns = _public_namespace(math)
        ```
    """
    selected = names or tuple(name for name in dir(source) if not name.startswith("_"))
    return SimpleNamespace(**{name: getattr(source, name) for name in selected})


def _library_modules() -> dict[str, SimpleNamespace]:
    """Return the sandbox stand-ins for the importable library modules.

    Example:
        ```python
        modules = _library_modules()
        ```
    """
    return {
        "math": _public_namespace(math),
        "json": SimpleNamespace(
            dumps=json.dumps,
            loads=json.loads,
            JSONDecodeError=json.JSONDecodeError,
        ),
        "re": _public_namespace(re, _RE_NAMES),
        "datetime": SimpleNamespace(
            date=date,
            datetime=datetime,
            time=time,
            timedelta=timedelta,
            timezone=timezone,
        ),
    }


def _sandbox_import_factory(modules: Mapping[str, SimpleNamespace]) -> Callable[..., Any]:
    """Build an `__import__` that only resolves the sandbox library modules.

    Example:
        ```python
        importer = _sandbox_import_factory(_library_modules())
        ```
    """

    def _sandbox_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        """Resolve `import name` against the sandbox module table.

        Example:
            ```python
            math_ns = _sandbox_import("math")
            ```
        """
        if level == 0 and name in modules:
            return modules[name]
        raise ImportError(f"Import '{name}' is not available in the sandbox")

    return _sandbox_import


def _safe_builtins(modules: Mapping[str, SimpleNamespace]) -> dict[str, Any]:
    """Return the restricted `__builtins__` mapping.

    Example:
        ```python
        table = _safe_builtins(_library_modules())
        ```
    """
    safe = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
    safe["__build_class__"] = builtins.__build_class__
    safe["__import__"] = _sandbox_import_factory(modules)
    return safe


def _input_bindings(input_data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Expose input keys that are usable as Python names.

    Example:
        ```python
        assert _input_bindings({"x": 1, "not valid": 2}) == {"x": 1}
        ```
    """
    if not input_data:
        return {}
    return {
        key: value
        for key, value in input_data.items()
        if isinstance(key, str) and key.isidentifier() and not keyword.iskeyword(key)
    }


def build_environment(
    input_data: Mapping[str, Any] | None = None,
    on_output: Callable[..., Any] | None = None,
    *,
    network: bool = False,
    timers: bool = False,
) -> SandboxEnvironment:
    """Assemble a fresh capability table for one execution.

    Input variables go in first; the capture hooks, `set_result` and the
    library table are merged over them so input cannot shadow them.

    Example:
        ```python
        env = build_environment({"x": 10, "y": 5}, on_output=print)
        exec("set_result(x + y)", env.bindings)
        assert env.result.read() == 15
        ```
    """
    logs: list[tuple[Any, ...]] = []
    slot = ResultSlot()
    modules = _library_modules()

    def capture(*args: Any, **print_options: Any) -> None:
        """Record one output call and forward it to the external sink.

        Example:
            ```python
            capture("hello", "world")
            ```
        """
        logs.append(args)
        if on_output is not None:
            on_output(*args)

    def set_result(value: Any) -> None:
        """Store `value` as the execution result.

        Example:
            ```python
            set_result([1, 2, 3])
            ```
        """
        slot.set(value)

    bindings: dict[str, Any] = _input_bindings(input_data)
    bindings.update(
        {
            "__builtins__": _safe_builtins(modules),
            "__name__": SANDBOX_MODULE_NAME,
            "print": capture,
            "console": SimpleNamespace(**{method: capture for method in _CONSOLE_METHODS}),
            "set_result": set_result,
            "math": modules["math"],
            "json": modules["json"],
            "re": modules["re"],
            "datetime": datetime,
            "date": date,
            "time": time,
            "timedelta": timedelta,
            "timezone": timezone,
            "quote": quote,
            "unquote": unquote,
        }
    )
    bindings.update(host_bindings(network=network, timers=timers))
    return SandboxEnvironment(bindings=bindings, logs=logs, result=slot)
