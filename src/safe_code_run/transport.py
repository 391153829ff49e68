"""Boundary between the sandbox and its callers.

Every call here returns one of two envelope shapes and never raises:

- success: ``{"success": True, "result", "logs", "executionTime": "<n>ms"}``
- failure: ``{"isError": True, "error", "solution"}``
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, TextIO

from .execution.engine import ExecutionEngine
from .policy import SandboxPolicy
from .runner import run_request
from .types import DEFAULT_TIMEOUT_MS, ExecutionOutcome, ExecutionRequest

logger = logging.getLogger(__name__)

SOLUTION_TEXT = """Python execution failed. Common issues:
    • Syntax errors: Check for missing colons, brackets, quotes or bad indentation
    • Forbidden operations: Avoid imports, file or process access, eval()/exec() and dunder attributes
    • Infinite loops: Code execution is stopped once the timeout is exceeded
    • Network errors: fetch() is only available when the host allows network access
    • Type errors: Verify data types and that attributes and keys exist
    • Name errors: Make sure all variables and functions are defined
    • Missing result: Use set_result(value) to return a result from your code

Available APIs: math, json, re, datetime, date, time, timedelta, timezone, quote, unquote, print, console.log, set_result
Input data properties are available as variables in your code scope.
Use set_result(value) to return results instead of relying on the last expression."""


def success_envelope(outcome: ExecutionOutcome) -> dict[str, Any]:
    """Build the success envelope for a completed execution.

    Example:
        ```python
        envelope = success_envelope(ExecutionOutcome(ok=True, result=5, elapsed_ms=3))
        ```
    """
    return {
        "result": outcome.result,
        "logs": [list(entry) for entry in outcome.logs],
        "executionTime": f"{outcome.elapsed_ms}ms",
        "success": True,
    }


def failure_envelope(error: str) -> dict[str, Any]:
    """Build the failure envelope with the fixed troubleshooting note.

    Example:
        ```python
        envelope = failure_envelope("Execution timeout: 5000ms limit exceeded")
        ```
    """
    return {
        "isError": True,
        "error": error,
        "solution": SOLUTION_TEXT,
    }


def to_envelope(outcome: ExecutionOutcome) -> dict[str, Any]:
    """Translate an outcome into the external envelope.

    Example:
        ```python
        envelope = to_envelope(run_code("set_result(1)"))
        ```
    """
    if outcome.ok:
        return success_envelope(outcome)
    return failure_envelope(outcome.error or "Code execution failed")


def safe_run(
    code: Any,
    input_data: Mapping[str, Any] | None = None,
    timeout_ms: Any = DEFAULT_TIMEOUT_MS,
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
    on_log: Callable[..., Any] | None = None,
) -> dict[str, Any]:
    """Run code and always return an envelope, whatever goes wrong.

    Example:
        ```python
        envelope = safe_run("set_result(x + y)", {"x": 10, "y": 5})
        assert envelope["result"] == 15
        ```
    """
    try:
        request = ExecutionRequest(
            code=code,
            input=input_data if input_data is not None else {},
            timeout_ms=timeout_ms,
        )
        outcome = run_request(request, engine=engine, policy=policy, on_log=on_log)
    except Exception as exc:
        logger.exception("sandbox run failed outside the executed code")
        return failure_envelope(str(exc) or type(exc).__name__)
    return to_envelope(outcome)


def handle_message(
    message: Any,
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
    on_log: Callable[..., Any] | None = None,
) -> dict[str, Any]:
    """Answer one worker-transport message.

    Request: ``{"type": "execute", "id": str, "payload": {code, input, timeout}}``.
    The response is the envelope with the request ``id`` added at top level.

    Example:
        ```python
        reply = handle_message({"type": "execute", "id": "1", "payload": {"code": "set_result(2)"}})
        ```
    """
    if not isinstance(message, Mapping):
        return {"id": None, **failure_envelope("Message must be a JSON object")}
    message_id = message.get("id")
    if message.get("type") != "execute":
        return {
            "id": message_id,
            **failure_envelope(f"Unsupported message type: {message.get('type')!r}"),
        }
    payload = message.get("payload")
    if not isinstance(payload, Mapping):
        return {"id": message_id, **failure_envelope("Message payload must be an object")}
    envelope = safe_run(
        payload.get("code"),
        payload.get("input"),
        payload.get("timeout", DEFAULT_TIMEOUT_MS),
        engine=engine,
        policy=policy,
        on_log=on_log,
    )
    return {"id": message_id, **envelope}


def serve(
    reader: TextIO,
    writer: TextIO,
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
) -> int:
    """Answer JSON-lines messages from `reader` until EOF; return the count.

    Example:
        ```python
        handled = serve(sys.stdin, sys.stdout)
        ```
    """
    handled = 0
    for line in reader:
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            reply: dict[str, Any] = {"id": None, **failure_envelope(f"Invalid JSON message: {exc}")}
        else:
            reply = handle_message(message, engine=engine, policy=policy)
        writer.write(json.dumps(reply, default=str) + "\n")
        writer.flush()
        handled += 1
    return handled
