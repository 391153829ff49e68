from __future__ import annotations

from typing import Any, Callable, Protocol

from .types import WorkerOutcome, WorkerRequest


class ExecutionEngine(Protocol):
    def execute(
        self,
        request: WorkerRequest,
        on_log: Callable[..., Any] | None = None,
    ) -> WorkerOutcome:
        """Execute one request and return the collected worker outcome.

        Example:
            ```python
            outcome = engine.execute(WorkerRequest(payload={"code": "set_result(1)"}, timeout_ms=5000))
            ```
        """
        ...
