from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .types import DEFAULT_TIMEOUT_MS, validate_timeout_ms

# Fixed scan order: the first listed word found is the one reported.
BUILTIN_FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    # browser and global-scope aliases
    "window",
    "document",
    "globalThis",
    "self",
    "parent",
    "top",
    "frames",
    "opener",
    "globals",
    "locals",
    "vars",
    "builtins",
    "__builtins__",
    # dynamic evaluation
    "eval",
    "exec",
    "compile",
    "__import__",
    "importlib",
    # object-identity internals
    "constructor",
    "prototype",
    "__proto__",
    "__class__",
    "__bases__",
    "__base__",
    "__mro__",
    "__subclasses__",
    "__globals__",
    "__code__",
    "__closure__",
    "__dict__",
    "__getattribute__",
    "__reduce__",
    "__reduce_ex__",
    "__loader__",
    "__spec__",
    # frame and traceback introspection
    "__traceback__",
    "tb_frame",
    "tb_next",
    "f_back",
    "f_globals",
    "f_builtins",
    "f_locals",
    "gi_frame",
    "gi_code",
    "cr_frame",
    "ag_frame",
    # host process
    "process",
    "require",
    "module",
    "exports",
    "__dirname",
    "__filename",
    "global",
    "os",
    "sys",
    "subprocess",
    "shutil",
    "signal",
    "ctypes",
    "open",
    "breakpoint",
    "__file__",
    # background workers, files and network bypass
    "Worker",
    "SharedWorker",
    "ServiceWorker",
    "MessageChannel",
    "FileReader",
    "Blob",
    "File",
    "FileSystem",
    "XMLHttpRequest",
    "WebSocket",
    "EventSource",
    "threading",
    "multiprocessing",
    "_thread",
    "socket",
    "urllib",
    "http.client",
    "http.server",
    "ssl",
    "pickle",
    "marshal",
)


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_ms": DEFAULT_TIMEOUT_MS,
            "memory_limit_mb": 256,
            "forbidden_keywords": list(BUILTIN_FORBIDDEN_KEYWORDS),
            "network": False,
            "timers": False,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings policy field.

    Example:
        ```python
        words = _list_of_str(["os", "sys"], "forbidden_keywords")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item:
            raise ValueError(f"'{field_name}' must contain only non-empty strings")
        out.append(item)
    return out


def _flag(value: Any, field_name: str) -> bool:
    """Validate a boolean policy field.

    Example:
        ```python
        enabled = _flag(True, "network")
        ```
    """
    if not isinstance(value, bool):
        raise ValueError(f"'{field_name}' must be true or false")
    return value


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_POLICY_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("timeout_ms", DEFAULT_TIMEOUT_MS))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", 256))
DEFAULT_FORBIDDEN_KEYWORDS = _list_of_str(
    _DEFAULT_POLICY_RAW.get("forbidden_keywords", list(BUILTIN_FORBIDDEN_KEYWORDS)),
    "forbidden_keywords",
)
DEFAULT_NETWORK = _flag(_DEFAULT_POLICY_RAW.get("network", False), "network")
DEFAULT_TIMERS = _flag(_DEFAULT_POLICY_RAW.get("timers", False), "timers")


@dataclass(slots=True)
class SandboxPolicy:
    """Guardrails applied to every sandboxed execution.

    `network` and `timers` are host capabilities: when enabled the sandbox
    also exposes `fetch` and `sleep`.

    Example:
        ```python
        policy = SandboxPolicy(timeout_ms=2000, network=True)
        ```
    """

    timeout_ms: int = DEFAULT_POLICY_TIMEOUT_MS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    forbidden_keywords: list[str] = field(
        default_factory=lambda: DEFAULT_FORBIDDEN_KEYWORDS.copy()
    )
    network: bool = DEFAULT_NETWORK
    timers: bool = DEFAULT_TIMERS
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            SandboxPolicy(timeout_ms=100)
            ```
        """
        self.timeout_ms = validate_timeout_ms(self.timeout_ms)
        if int(self.memory_limit_mb) <= 0:
            raise ValueError("memory_limit_mb must be positive")

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = SandboxPolicy.from_file("/tmp/policy.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ValueError(f"Policy file not found: {config_path}")
        raw = _read_policy_toml(path)
        return cls(
            timeout_ms=int(raw.get("timeout_ms", DEFAULT_POLICY_TIMEOUT_MS)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            forbidden_keywords=_list_of_str(
                raw.get("forbidden_keywords", DEFAULT_FORBIDDEN_KEYWORDS.copy()),
                "forbidden_keywords",
            ),
            network=_flag(raw.get("network", DEFAULT_NETWORK), "network"),
            timers=_flag(raw.get("timers", DEFAULT_TIMERS), "timers"),
            config_path=config_path,
        )
