import io
import json

from safe_code_run import ExecutionOutcome, LocalEngine, handle_message, safe_run, to_envelope
from safe_code_run.transport import SOLUTION_TEXT, serve

ENGINE = LocalEngine()


def test_success_envelope_shape() -> None:
    outcome = ExecutionOutcome(ok=True, result=42, logs=(("hello", "world"),), elapsed_ms=12)

    assert to_envelope(outcome) == {
        "result": 42,
        "logs": [["hello", "world"]],
        "executionTime": "12ms",
        "success": True,
    }


def test_failure_envelope_shape() -> None:
    outcome = ExecutionOutcome(ok=False, error="Execution timeout: 100ms limit exceeded", timed_out=True)

    assert to_envelope(outcome) == {
        "isError": True,
        "error": "Execution timeout: 100ms limit exceeded",
        "solution": SOLUTION_TEXT,
    }


def test_solution_text_lists_common_causes() -> None:
    for cause in ("Syntax errors", "Forbidden operations", "Infinite loops", "Network errors",
                  "Type errors", "Name errors", "Missing result"):
        assert cause in SOLUTION_TEXT


def test_safe_run_end_to_end() -> None:
    envelope = safe_run("print('hello', 'world')\nset_result(x + y)", {"x": 10, "y": 5}, engine=ENGINE)

    assert envelope["success"] is True
    assert envelope["result"] == 15
    assert envelope["logs"] == [["hello", "world"]]
    assert envelope["executionTime"].endswith("ms")


def test_safe_run_reports_rejection() -> None:
    envelope = safe_run("window.alert('x')", engine=ENGINE)

    assert envelope["isError"] is True
    assert "Forbidden keyword: 'window'" in envelope["error"]


def test_safe_run_never_raises_on_bad_arguments() -> None:
    bad_timeout = safe_run("set_result(1)", timeout_ms=5, engine=ENGINE)
    assert bad_timeout["isError"] is True
    assert "between 100 and 30000" in bad_timeout["error"]

    bad_code = safe_run(None, engine=ENGINE)
    assert bad_code["isError"] is True
    assert bad_code["error"] == "code must be a string"


def test_safe_run_catches_engine_failures() -> None:
    class _ExplodingEngine:
        def execute(self, request, on_log=None):
            raise RuntimeError("engine offline")

    envelope = safe_run("set_result(1)", engine=_ExplodingEngine())
    assert envelope == {"isError": True, "error": "engine offline", "solution": SOLUTION_TEXT}


def test_handle_message_echoes_id_flat() -> None:
    reply = handle_message(
        {"type": "execute", "id": "req-1", "payload": {"code": "set_result(n * 2)", "input": {"n": 4}, "timeout": 2000}},
        engine=ENGINE,
    )

    assert reply["id"] == "req-1"
    assert reply["success"] is True
    assert reply["result"] == 8


def test_handle_message_failure_keeps_id() -> None:
    reply = handle_message(
        {"type": "execute", "id": "req-2", "payload": {"code": "x = 1 / 0"}},
        engine=ENGINE,
    )

    assert reply["id"] == "req-2"
    assert reply["isError"] is True
    assert reply["error"] == "ZeroDivisionError: division by zero"


def test_handle_message_rejects_unknown_type_and_payload() -> None:
    unknown = handle_message({"type": "ping", "id": "req-3"})
    assert unknown["id"] == "req-3"
    assert unknown["isError"] is True
    assert "Unsupported message type" in unknown["error"]

    no_payload = handle_message({"type": "execute", "id": "req-4"})
    assert no_payload["isError"] is True
    assert no_payload["error"] == "Message payload must be an object"

    not_object = handle_message(["execute"])
    assert not_object["id"] is None
    assert not_object["isError"] is True


def test_serve_answers_each_line() -> None:
    messages = "\n".join(
        [
            json.dumps({"type": "execute", "id": "a", "payload": {"code": "set_result(1)"}}),
            "not json",
            "",
            json.dumps({"type": "execute", "id": "b", "payload": {"code": "import os"}}),
        ]
    )
    out = io.StringIO()

    handled = serve(io.StringIO(messages), out, engine=ENGINE)

    replies = [json.loads(line) for line in out.getvalue().splitlines()]
    assert handled == 3
    assert replies[0]["id"] == "a"
    assert replies[0]["result"] == 1
    assert replies[1]["isError"] is True
    assert "Invalid JSON message" in replies[1]["error"]
    assert replies[2]["id"] == "b"
    assert "Forbidden keyword: 'os'" in replies[2]["error"]
