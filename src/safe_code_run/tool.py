from __future__ import annotations

from typing import Any, Callable, Mapping

from .execution.engine import ExecutionEngine
from .policy import SandboxPolicy
from .transport import failure_envelope, safe_run
from .types import DEFAULT_TIMEOUT_MS, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS, ExecutionRequest

TOOL_NAME = "python_execution"

TOOL_DESCRIPTION = """Execute Python code safely in a sandboxed environment.
SECURITY: Runs in a restricted sandbox - no imports beyond the listed APIs, no file system, no processes.
AVAILABLE APIS: math, json, re, datetime, date, time, timedelta, timezone, quote, unquote, print, console.log, set_result

RESULT OUTPUT: Use set_result(value) to return a result from your code.
- eg. set_result({"name": "test"})

INPUT DATA: All input properties become variables in your code scope
- Input: {"numbers": [1, 2, 3], "multiplier": 2}
- Code: "set_result([n * multiplier for n in numbers])"

Example usage:
{
  "input": {"numbers": [1, 2, 3]},
  "code": "total = sum(numbers)\\nprint(total)\\nset_result(total)"
}"""

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "code": {
            "type": "string",
            "description": (
                "Python code to execute. Use set_result(value) to return a result. "
                "Can include calculations, data processing and logic operations. "
                "Avoid imports, file system access or process control."
            ),
        },
        "input": {
            "type": "object",
            "description": (
                "Input data passed as variables to your code. Each property becomes a "
                "variable you can use directly. Example: {\"name\": \"Alice\", \"age\": 25} "
                "makes 'name' and 'age' variables available in your code."
            ),
            "properties": {},
            "additionalProperties": True,
            "default": {},
        },
        "timeout": {
            "type": "number",
            "description": "Execution timeout in milliseconds to prevent infinite loops",
            "default": DEFAULT_TIMEOUT_MS,
            "minimum": MIN_TIMEOUT_MS,
            "maximum": MAX_TIMEOUT_MS,
        },
    },
    "required": ["code"],
}


def tool_definition() -> dict[str, Any]:
    """Return the tool name, description and JSON schema for registration.

    Example:
        ```python
        definition = tool_definition()
        ```
    """
    return {
        "name": TOOL_NAME,
        "description": TOOL_DESCRIPTION,
        "input_schema": INPUT_SCHEMA,
    }


def parse_tool_arguments(arguments: Mapping[str, Any]) -> ExecutionRequest:
    """Validate tool-call arguments into an `ExecutionRequest`.

    Example:
        ```python
        request = parse_tool_arguments({"code": "set_result(1)", "timeout": 1000})
        ```
    """
    if not isinstance(arguments, Mapping):
        raise TypeError("Tool arguments must be an object")
    if "code" not in arguments:
        raise ValueError("Missing required argument 'code'")
    input_data = arguments.get("input")
    return ExecutionRequest(
        code=arguments["code"],
        input=input_data if input_data is not None else {},
        timeout_ms=arguments.get("timeout", DEFAULT_TIMEOUT_MS),
    )


def call_tool(
    arguments: Mapping[str, Any],
    *,
    engine: ExecutionEngine | None = None,
    policy: SandboxPolicy | None = None,
    on_log: Callable[..., Any] | None = None,
) -> dict[str, Any]:
    """Handle one tool call and return the transport envelope.

    Example:
        ```python
        envelope = call_tool({"code": "set_result(sum(numbers))", "input": {"numbers": [1, 2]}})
        ```
    """
    try:
        request = parse_tool_arguments(arguments)
    except (TypeError, ValueError) as exc:
        return failure_envelope(str(exc))
    return safe_run(
        request.code,
        request.input,
        request.timeout_ms,
        engine=engine,
        policy=policy,
        on_log=on_log,
    )
