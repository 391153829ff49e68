from .engine import ExecutionEngine
from .types import WorkerOutcome, WorkerRequest

__all__ = [
    "ExecutionEngine",
    "WorkerOutcome",
    "WorkerRequest",
]
