import math

import httpx
import pytest

from safe_code_run import build_environment
from safe_code_run.environment import SAFE_BUILTIN_NAMES, ResultSlot
from safe_code_run.host import FetchResponse, make_fetch
from safe_code_run.worker import execute_body


def test_input_keys_become_variables() -> None:
    env = build_environment({"x": 10, "y": 5})
    assert execute_body("set_result(x + y)", env) is None
    assert env.result.read() == 15


def test_input_cannot_shadow_capture_or_result_hooks() -> None:
    env = build_environment({"print": "nope", "set_result": "nope", "math": "nope"})
    assert execute_body("print(math.sqrt(16))\nset_result('ok')", env) is None
    assert env.logs == [(4.0,)]
    assert env.result.read() == "ok"


def test_unusable_input_names_are_skipped() -> None:
    env = build_environment({"not valid": 1, "class": 2, "ok_name": 3})
    assert "not valid" not in env.bindings
    assert "class" not in env.bindings
    assert env.bindings["ok_name"] == 3


def test_capture_keeps_arguments_unmodified_and_in_order() -> None:
    payload = {"a": [1, 2]}
    env = build_environment({"payload": payload})
    code = "print('first', 1)\nconsole.log(payload)\nconsole.error()\nprint('last', sep='-')"
    assert execute_body(code, env) is None
    assert env.logs == [("first", 1), (payload,), (), ("last",)]
    assert env.logs[1][0] is payload


def test_capture_forwards_to_external_sink() -> None:
    seen: list[tuple] = []
    env = build_environment(on_output=lambda *args: seen.append(args))
    assert execute_body("console.warn('careful', 3)\nprint('done')", env) is None
    assert seen == [("careful", 3), ("done",)]


def test_result_slot_last_write_wins() -> None:
    env = build_environment()
    assert execute_body("set_result(1)\nset_result([2, 3])", env) is None
    assert env.result.is_set
    assert env.result.read() == [2, 3]


def test_result_slot_starts_unset() -> None:
    slot = ResultSlot()
    assert not slot.is_set
    assert slot.read() is None


def test_library_table_is_available() -> None:
    env = build_environment()
    code = (
        "stamp = datetime(2024, 1, 2) + timedelta(days=1)\n"
        "words = re.findall(r'\\w+', 'a bc')\n"
        "set_result({\n"
        "    'sqrt': math.sqrt(81),\n"
        "    'nan': math.isnan(float('nan')),\n"
        "    'json': json.loads(json.dumps({'k': 1})),\n"
        "    'day': stamp.day,\n"
        "    'words': words,\n"
        "    'uri': unquote(quote('a b/c', safe='')),\n"
        "    'num': int('12') + float('0.5'),\n"
        "})"
    )
    assert execute_body(code, env) is None
    assert env.result.read() == {
        "sqrt": 9.0,
        "nan": True,
        "json": {"k": 1},
        "day": 3,
        "words": ["a", "bc"],
        "uri": "a b/c",
        "num": 12.5,
    }


def test_imports_resolve_only_to_library_table() -> None:
    env = build_environment()
    assert execute_body("import math as m\nfrom json import dumps\nset_result(dumps(m.pi > 3))", env) is None
    assert env.result.read() == "true"

    blocked = build_environment()
    error = execute_body("import pathlib", blocked)
    assert error == "ImportError: Import 'pathlib' is not available in the sandbox"


def test_sandbox_math_is_a_copy_not_the_module() -> None:
    env = build_environment()
    assert env.bindings["math"] is not math
    assert env.bindings["math"].sqrt is math.sqrt


def test_builtins_are_restricted() -> None:
    env = build_environment()
    table = env.bindings["__builtins__"]
    assert set(table) == set(SAFE_BUILTIN_NAMES) | {"__build_class__", "__import__"}
    error = execute_body("getattr(1, 'real')", env)
    assert error == "NameError: name 'getattr' is not defined"


def test_classes_can_be_defined() -> None:
    env = build_environment()
    code = (
        "class Point:\n"
        "    def __init__(self, x, y):\n"
        "        self.x = x\n"
        "        self.y = y\n"
        "set_result(Point(1, 2).y)"
    )
    assert execute_body(code, env) is None
    assert env.result.read() == 2


def test_runtime_and_syntax_errors_are_reported() -> None:
    assert execute_body("x = 1 / 0", build_environment()) == "ZeroDivisionError: division by zero"
    error = execute_body("set_result(2 +)", build_environment())
    assert error is not None
    assert error.startswith("SyntaxError:")


def test_logs_before_failure_are_kept() -> None:
    env = build_environment()
    error = execute_body("print('before')\nraise ValueError('boom')\nprint('after')", env)
    assert error == "ValueError: boom"
    assert env.logs == [("before",)]


def test_host_bindings_follow_capabilities() -> None:
    plain = build_environment()
    assert "fetch" not in plain.bindings
    assert "sleep" not in plain.bindings

    hosted = build_environment(network=True, timers=True)
    assert callable(hosted.bindings["fetch"])
    assert callable(hosted.bindings["sleep"])


def test_fetch_response_helpers() -> None:
    response = FetchResponse(status=201, headers={}, text='{"id": 7}')
    assert response.ok
    assert response.json() == {"id": 7}
    assert not FetchResponse(status=404).ok


@pytest.mark.parametrize("name", ["open", "eval", "exec", "compile", "getattr", "globals", "input"])
def test_dangerous_builtins_are_absent(name: str) -> None:
    assert name not in build_environment().bindings["__builtins__"]


def test_re_namespace_has_no_compile() -> None:
    env = build_environment()
    assert not hasattr(env.bindings["re"], "compile")
    assert execute_body("set_result(re.sub(r'\\s+', '-', 'a  b c'))", env) is None
    assert env.result.read() == "a-b-c"


def test_fetch_accepts_plain_http_urls() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"ok": True})

    fetch = make_fetch(lambda: httpx.Client(transport=httpx.MockTransport(handler)))
    response = fetch("http://example.org/items")

    assert seen == ["http://example.org/items"]
    assert response.ok
    assert response.json() == {"ok": True}


def test_guard_runs_before_any_output() -> None:
    env = build_environment()
    error = execute_body("print('before')\nup = err.tb_frame", env)
    assert error == "SandboxViolation: Attribute 'tb_frame' is not available in the sandbox (line 2)"
    assert env.logs == []
