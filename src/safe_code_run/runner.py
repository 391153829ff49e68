from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from .execution.capabilities import preflight_validate_engine_capabilities
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.types import WorkerOutcome, WorkerRequest
from .policy import SandboxPolicy
from .types import ExecutionOutcome, ExecutionRequest, Rejected
from .validator import validate

logger = logging.getLogger(__name__)


def _resolve_policy(policy: SandboxPolicy | None, policy_file: str | None) -> SandboxPolicy:
    """Resolve the effective policy object for a run.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return SandboxPolicy.from_file(policy_file)
    if policy is None:
        return SandboxPolicy()
    if policy.config_path is not None:
        return SandboxPolicy.from_file(policy.config_path)
    return policy


def _build_payload(request: ExecutionRequest, policy: SandboxPolicy) -> dict[str, Any]:
    """Build the worker payload from a request and policy.

    Example:
        ```python
        payload = _build_payload(ExecutionRequest(code="set_result(x)", input={"x": 2}), SandboxPolicy())
        ```
    """
    return {
        "code": request.code,
        "input": dict(request.input),
        "policy": {
            "memory_limit_mb": policy.memory_limit_mb,
            "network": policy.network,
            "timers": policy.timers,
        },
    }


def _elapsed_ms(start: float) -> int:
    """Return whole milliseconds since `start` (a perf_counter value).

    Example:
        ```python
        ms = _elapsed_ms(time.perf_counter())
        ```
    """
    return int((time.perf_counter() - start) * 1000)


def _normalize(raw: WorkerOutcome, request: ExecutionRequest, start: float) -> ExecutionOutcome:
    """Turn a raw worker outcome into an `ExecutionOutcome`.

    Example:
        ```python
        outcome = _normalize(WorkerOutcome(final={"ok": True, "result": 1}), request, start)
        ```
    """
    logs = tuple(tuple(args) for args in raw.logs)
    elapsed = _elapsed_ms(start)

    if raw.timed_out:
        return ExecutionOutcome(
            ok=False,
            logs=logs,
            error=f"Execution timeout: {request.timeout_ms}ms limit exceeded",
            elapsed_ms=elapsed,
            timed_out=True,
        )

    if raw.final is None:
        detail = raw.error or f"Worker exited with code {raw.returncode} before reporting a result"
        stderr_tail = raw.stderr.strip().splitlines()[-1:] if raw.stderr.strip() else []
        if stderr_tail:
            detail = f"{detail} ({stderr_tail[0]})"
        return ExecutionOutcome(ok=False, logs=logs, error=detail, elapsed_ms=elapsed)

    ok = bool(raw.final.get("ok"))
    return ExecutionOutcome(
        ok=ok,
        result=raw.final.get("result") if ok else None,
        logs=logs,
        error=None if ok else str(raw.final.get("error") or "Unknown execution error"),
        elapsed_ms=elapsed,
    )


def run_request(
    request: ExecutionRequest,
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
    on_log: Callable[..., Any] | None = None,
) -> ExecutionOutcome:
    """Validate and execute one request, returning a normalized outcome.

    Rejected code never reaches the engine. Runtime errors and timeouts are
    reported in the outcome, not raised.

    Example:
        ```python
        outcome = run_request(ExecutionRequest(code="set_result(2 + 3)"))
        ```
    """
    resolved_policy = _resolve_policy(policy, policy_file)
    start = time.perf_counter()

    verdict = validate(request.code, resolved_policy.forbidden_keywords)
    if isinstance(verdict, Rejected):
        logger.warning("code rejected before execution: %s", verdict.reason)
        return ExecutionOutcome(
            ok=False,
            error=verdict.reason,
            elapsed_ms=_elapsed_ms(start),
            rejected=True,
        )

    active_engine: ExecutionEngine = engine if engine is not None else LocalEngine()
    preflight_validate_engine_capabilities(type(active_engine).__name__.lower())
    raw = active_engine.execute(
        WorkerRequest(
            payload=_build_payload(request, resolved_policy),
            timeout_ms=request.timeout_ms,
        ),
        on_log=on_log,
    )
    outcome = _normalize(raw, request, start)
    logger.debug(
        "execution finished ok=%s timed_out=%s logs=%d elapsed=%sms",
        outcome.ok,
        outcome.timed_out,
        len(outcome.logs),
        outcome.elapsed_ms,
    )
    return outcome


def run_code(
    code: str,
    input_data: Mapping[str, Any] | None = None,
    timeout_ms: int | None = None,
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
    on_log: Callable[..., Any] | None = None,
) -> ExecutionOutcome:
    """Execute untrusted code in the sandbox.

    `timeout_ms` defaults to the policy's budget.

    Example:
        ```python
        from safe_code_run import run_code
        outcome = run_code("set_result(x + y)", {"x": 10, "y": 5})
        assert outcome.result == 15
        ```
    """
    resolved_policy = _resolve_policy(policy, policy_file)
    request = ExecutionRequest(
        code=code,
        input=dict(input_data or {}),
        timeout_ms=resolved_policy.timeout_ms if timeout_ms is None else timeout_ms,
    )
    return run_request(request, engine=engine, policy=resolved_policy, on_log=on_log)
