from pathlib import Path

import pytest

from safe_code_run import LocalEngine, SandboxPolicy, run_code as raw_run_code
from safe_code_run.policy import BUILTIN_FORBIDDEN_KEYWORDS, DEFAULT_FORBIDDEN_KEYWORDS

ENGINE = LocalEngine()


def run_code(*args, **kwargs):
    kwargs.setdefault("engine", ENGINE)
    return raw_run_code(*args, **kwargs)


def test_bundled_policy_matches_builtin_denylist() -> None:
    assert DEFAULT_FORBIDDEN_KEYWORDS == list(BUILTIN_FORBIDDEN_KEYWORDS)
    policy = SandboxPolicy()
    assert policy.timeout_ms == 5000
    assert policy.network is False
    assert policy.timers is False


def test_policy_file_path_sets_denylist_and_capabilities(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text(
        (
            "[policy]\n"
            "timeout_ms = 2000\n"
            "timers = true\n"
            "forbidden_keywords = [\"secret\"]\n"
        ),
        encoding="utf-8",
    )

    blocked = run_code("x = 'secret'", policy_file=str(policy_file))
    assert blocked.ok is False
    assert "Forbidden keyword: 'secret'" in (blocked.error or "")

    timers = run_code("sleep(0)\nset_result('ok')", policy_file=str(policy_file))
    assert timers.ok is True
    assert timers.result == "ok"


def test_policy_from_file_reads_fields(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text(
        "[policy]\ntimeout_ms = 750\nmemory_limit_mb = 64\nnetwork = true\n",
        encoding="utf-8",
    )

    policy = SandboxPolicy.from_file(str(policy_file))
    assert policy.timeout_ms == 750
    assert policy.memory_limit_mb == 64
    assert policy.network is True
    assert policy.timers is False
    assert policy.forbidden_keywords == DEFAULT_FORBIDDEN_KEYWORDS
    assert policy.config_path == str(policy_file)


def test_run_code_rejects_policy_and_policy_file_together(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("[policy]\ntimeout_ms = 1000\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Provide either 'policy' or 'policy_file'"):
        run_code("set_result(1)", policy=SandboxPolicy(), policy_file=str(policy_file))


def test_missing_policy_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Policy file not found"):
        SandboxPolicy.from_file(str(tmp_path / "missing.toml"))


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("forbidden_keywords = \"os\"\n", "must be a list of strings"),
        ("network = \"yes\"\n", "must be true or false"),
        ("timeout_ms = 50\n", "between 100 and 30000"),
        ("memory_limit_mb = 0\n", "must be positive"),
    ],
)
def test_invalid_policy_values_are_rejected(tmp_path: Path, body: str, message: str) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("[policy]\n" + body, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        SandboxPolicy.from_file(str(policy_file))


def test_timeout_bounds_on_run_code() -> None:
    with pytest.raises(ValueError, match="between 100 and 30000"):
        run_code("set_result(1)", timeout_ms=99)
    with pytest.raises(ValueError, match="between 100 and 30000"):
        run_code("set_result(1)", timeout_ms=30001)
