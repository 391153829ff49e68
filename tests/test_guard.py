import ast

import pytest

from safe_code_run.guard import SandboxViolation, check_tree, is_blocked_attribute


def _check(code: str) -> None:
    check_tree(ast.parse(code))


@pytest.mark.parametrize(
    ("code", "name"),
    [
        ("fr = err.__traceback__", "__traceback__"),
        ("fr = tb.tb_frame", "tb_frame"),
        ("up = frame.f_back", "f_back"),
        ("b = frame.f_builtins", "f_builtins"),
        ("g = gen.gi_frame", "gi_frame"),
        ("c = coro.cr_frame", "cr_frame"),
        ("bases = Thing.mro()", "mro"),
        ("obj._private = 1", "_private"),
        ("del obj.__dict__", "__dict__"),
        ("x = f'{fn.__globals__}'", "__globals__"),
    ],
)
def test_blocked_attribute_paths(code: str, name: str) -> None:
    with pytest.raises(SandboxViolation, match=f"Attribute '{name}' is not available in the sandbox"):
        _check(code)


def test_violation_reports_line() -> None:
    with pytest.raises(SandboxViolation, match=r"\(line 3\)"):
        _check("a = 1\nb = 2\nc = fn.__code__")


def test_match_class_keyword_patterns_are_checked() -> None:
    code = "match err:\n    case ValueError(__traceback__=tb):\n        pass"
    with pytest.raises(SandboxViolation, match="__traceback__"):
        _check(code)
    _check("match point:\n    case Point(x=0, y=y):\n        pass")


def test_format_fields_are_checked_after_literal_merge() -> None:
    with pytest.raises(SandboxViolation, match="__init__"):
        _check('s = "{0.__init__" ".__globals__}".format(fn)')
    with pytest.raises(SandboxViolation, match="__globals__"):
        _check('s = "{0.name.__globals__!r:>10}".format(fn)')
    _check('s = "{0.name} has {count:>3} items {{not.a.field}}".format(item, count=2)')


def test_ordinary_code_passes() -> None:
    _check(
        "class Point:\n"
        "    def __init__(this, x):\n"
        "        this.x = x\n"
        "items = [Point(1)]\n"
        "items.append(Point(2))\n"
        "set_result(sum(p.x for p in items))"
    )


@pytest.mark.parametrize(("name", "blocked"), [("__class__", True), ("_x", True), ("f_locals", True), ("append", False), ("real", False)])
def test_is_blocked_attribute(name: str, blocked: bool) -> None:
    assert is_blocked_attribute(name) is blocked
