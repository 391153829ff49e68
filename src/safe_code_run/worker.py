"""Child-process entry point that runs one sandboxed snippet.

Reads a JSON payload from stdin and writes JSON lines to stdout: a
`{"event": "ready"}` line right before the snippet starts, one
`{"event": "log", ...}` line per output call as it happens, then a single
`{"event": "done", ...}` line.
"""

from __future__ import annotations

import ast
import contextlib
import io
import json
import sys
from typing import Any, TextIO

from .environment import SandboxEnvironment, build_environment
from .guard import SandboxViolation, check_tree

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

SANDBOX_FILENAME = "<sandbox>"


def _set_limits(memory_limit_mb: int) -> list[str]:
    """Cap the address space of this process.

    Example:
        ```python
        problems = _set_limits(256)
        ```
    """
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    mem_bytes = int(memory_limit_mb) * 1024 * 1024

    try:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_AS)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = mem_bytes
        else:
            target_hard = min(mem_bytes, current_hard)
        target_soft = min(mem_bytes, target_hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (target_soft, target_hard))
    except (ValueError, OSError) as exc:
        errors.append(f"RLIMIT_AS not applied: {exc}")

    return errors


def _emit(stream: TextIO, event: dict[str, Any]) -> None:
    """Write one protocol event and flush it immediately.

    Example:
        ```python
        _emit(sys.stdout, {"event": "log", "args": ["hi"]})
        ```
    """
    stream.write(json.dumps(event, default=str) + "\n")
    stream.flush()


def _format_error(exc: BaseException) -> str:
    """Render an exception as `<Type>: <message>`.

    Example:
        ```python
        text = _format_error(ValueError("bad"))
        ```
    """
    return f"{type(exc).__name__}: {exc}"


def execute_body(code: str, environment: SandboxEnvironment) -> str | None:
    """Compile and run `code` with the environment as its whole global scope.

    The parsed tree goes through `check_tree` first, so attribute paths into
    frames, tracebacks and dunder internals never execute. Returns None on
    normal completion, or the error text when parsing, the guard or
    execution failed.

    Example:
        ```python
        env = build_environment({"x": 2})
        assert execute_body("set_result(x * 2)", env) is None
        ```
    """
    try:
        tree = ast.parse(code, SANDBOX_FILENAME)
    except SyntaxError as exc:
        return f"SyntaxError: {exc}"
    try:
        check_tree(tree)
    except SandboxViolation as exc:
        return _format_error(exc)
    byte_code = compile(tree, SANDBOX_FILENAME, "exec", dont_inherit=True)

    sink_out = io.StringIO()
    sink_err = io.StringIO()
    try:
        with contextlib.redirect_stdout(sink_out), contextlib.redirect_stderr(sink_err):
            exec(byte_code, environment.bindings)
    except MemoryError:
        return "MemoryError: memory limit exceeded"
    except Exception as exc:
        return _format_error(exc)
    return None


def run_payload(payload: dict[str, Any], stream: TextIO) -> int:
    """Execute one decoded payload, streaming events to `stream`.

    Example:
        ```python
        code = run_payload({"code": "print(1)", "input": {}}, sys.stdout)
        ```
    """
    code = str(payload.get("code", ""))
    input_data = payload.get("input") or {}
    policy = payload.get("policy") or {}

    _set_limits(memory_limit_mb=int(policy.get("memory_limit_mb", 256)))

    def forward(*args: Any) -> None:
        """Stream one captured output call to the parent.

        Example:
            ```python
            forward("hello", 1)
            ```
        """
        _emit(stream, {"event": "log", "args": list(args)})

    environment = build_environment(
        input_data,
        on_output=forward,
        network=bool(policy.get("network", False)),
        timers=bool(policy.get("timers", False)),
    )
    _emit(stream, {"event": "ready"})
    error = execute_body(code, environment)
    if error is not None:
        _emit(stream, {"event": "done", "ok": False, "result": None, "error": error})
        return 1

    try:
        _emit(
            stream,
            {"event": "done", "ok": True, "result": environment.result.read(), "error": None},
        )
    except ValueError as exc:
        _emit(
            stream,
            {
                "event": "done",
                "ok": False,
                "result": None,
                "error": f"Result is not serializable: {exc}",
            },
        )
        return 1
    return 0


def main() -> int:
    """Read the payload from stdin and run it.

    Example:
        ```python
        raise SystemExit(main())
        ```
    """
    stream = sys.stdout
    try:
        payload = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError as exc:
        _emit(stream, {"event": "done", "ok": False, "result": None, "error": f"Invalid payload: {exc}"})
        return 1
    if not isinstance(payload, dict):
        _emit(stream, {"event": "done", "ok": False, "result": None, "error": "Invalid payload: expected an object"})
        return 1
    return run_payload(payload, stream)


if __name__ == "__main__":
    raise SystemExit(main())
