from .environment import SandboxEnvironment, build_environment
from .execution.local_engine import LocalEngine
from .policy import SandboxPolicy
from .runner import run_code, run_request
from .tool import TOOL_NAME, call_tool, tool_definition
from .transport import handle_message, safe_run, to_envelope
from .types import Allowed, ExecutionOutcome, ExecutionRequest, Rejected, SafetyVerdict
from .validator import validate

__all__ = [
    "Allowed",
    "ExecutionOutcome",
    "ExecutionRequest",
    "LocalEngine",
    "Rejected",
    "SafetyVerdict",
    "SandboxEnvironment",
    "SandboxPolicy",
    "TOOL_NAME",
    "build_environment",
    "call_tool",
    "handle_message",
    "run_code",
    "run_request",
    "safe_run",
    "tool_definition",
    "to_envelope",
    "validate",
]
