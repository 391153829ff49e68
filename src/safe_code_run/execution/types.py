from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class WorkerRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = WorkerRequest(payload={"code": "set_result(1 + 1)"}, timeout_ms=5000)
        ```
    """

    payload: dict[str, Any]
    timeout_ms: int


@dataclass(slots=True)
class WorkerOutcome:
    """Raw response collected from a worker run.

    `logs` holds every log event received before the worker finished or was
    killed; `final` is the decoded `done` event, if one arrived.

    Example:
        ```python
        out = WorkerOutcome(logs=[["hi"]], final={"ok": True, "result": 1}, returncode=0)
        ```
    """

    logs: list[list[Any]] = field(default_factory=list)
    final: dict[str, Any] | None = None
    returncode: int = 0
    timed_out: bool = False
    stderr: str = ""
    error: str | None = None
