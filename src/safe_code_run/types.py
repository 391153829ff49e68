from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

MIN_TIMEOUT_MS = 100
MAX_TIMEOUT_MS = 30000
DEFAULT_TIMEOUT_MS = 5000


def validate_timeout_ms(timeout_ms: Any) -> int:
    """Validate an execution budget and return it as an int.

    Example:
        ```python
        budget = validate_timeout_ms(2500)
        ```
    """
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
        raise TypeError("timeout must be a number of milliseconds")
    if timeout_ms != int(timeout_ms):
        raise ValueError("timeout must be a whole number of milliseconds")
    value = int(timeout_ms)
    if not MIN_TIMEOUT_MS <= value <= MAX_TIMEOUT_MS:
        raise ValueError(
            f"timeout must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} ms, got {value}"
        )
    return value


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One request to run untrusted code.

    Example:
        ```python
        req = ExecutionRequest(code="set_result(x + 1)", input={"x": 1}, timeout_ms=1000)
        ```
    """

    code: str
    input: Mapping[str, Any] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        """Validate fields and freeze the input mapping.

        Example:
            ```python
            ExecutionRequest(code="set_result(1)")
            ```
        """
        if not isinstance(self.code, str):
            raise TypeError("code must be a string")
        if not isinstance(self.input, Mapping):
            raise TypeError("input must be a mapping of names to values")
        for key in self.input:
            if not isinstance(key, str):
                raise TypeError("input keys must be strings")
        object.__setattr__(self, "input", MappingProxyType(dict(self.input)))
        object.__setattr__(self, "timeout_ms", validate_timeout_ms(self.timeout_ms))


@dataclass(frozen=True, slots=True)
class Allowed:
    """Verdict for code that passed every static check.

    Example:
        ```python
        verdict = Allowed()
        ```
    """

    @property
    def allowed(self) -> bool:
        """Return True; the code may run.

        Example:
            ```python
            assert Allowed().allowed
            ```
        """
        return True


@dataclass(frozen=True, slots=True)
class Rejected:
    """Verdict for code stopped before execution.

    Example:
        ```python
        verdict = Rejected("Forbidden keyword: 'os' - not allowed for security reasons")
        ```
    """

    reason: str

    @property
    def allowed(self) -> bool:
        """Return False; the code must not run.

        Example:
            ```python
            assert not Rejected("nope").allowed
            ```
        """
        return False


SafetyVerdict = Allowed | Rejected

ALLOWED = Allowed()


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Normalized result of one sandboxed execution.

    `logs` holds one tuple per output call, in call order, with the arguments
    exactly as passed.

    Example:
        ```python
        outcome = ExecutionOutcome(ok=True, result=42, logs=(("hello", "world"),), elapsed_ms=12)
        ```
    """

    ok: bool
    result: Any = None
    logs: tuple[tuple[Any, ...], ...] = ()
    error: str | None = None
    elapsed_ms: int = 0
    timed_out: bool = False
    rejected: bool = False
