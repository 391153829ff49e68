from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import IO, Any, Callable

from .types import WorkerOutcome, WorkerRequest

logger = logging.getLogger(__name__)

WORKER_MODULE = "safe_code_run.worker"
STARTUP_GRACE_SECONDS = 10.0


def _source_root() -> Path:
    """Return the directory that contains the `safe_code_run` package.

    Example:
        ```python
        root = _source_root()
        ```
    """
    return Path(__file__).resolve().parents[2]


def _worker_env() -> dict[str, str]:
    """Return the environment for the worker interpreter.

    Only `PATH`, `PYTHONPATH` and `PYTHONIOENCODING` are set; nothing else from
    the host environment reaches the worker.

    Example:
        ```python
        env = _worker_env()
        ```
    """
    project_root = str(_source_root())
    existing_pythonpath = os.environ.get("PYTHONPATH", "")
    return {
        "PATH": os.environ.get("PATH", os.defpath),
        "PYTHONPATH": (
            f"{project_root}{os.pathsep}{existing_pythonpath}" if existing_pythonpath else project_root
        ),
        "PYTHONIOENCODING": "utf-8",
    }


class LocalEngine:
    """Execute code in a fresh local worker process per request.

    The execution budget starts once the worker reports it is ready, so
    interpreter start-up does not eat into it. When the budget runs out the
    worker is killed; log events received before that are kept.

    Example:
        ```python
        engine = LocalEngine()
        ```
    """

    def __init__(
        self,
        *,
        python_executable: str | None = None,
        startup_grace_seconds: float = STARTUP_GRACE_SECONDS,
    ) -> None:
        """Initialize the engine with the interpreter used for workers.

        Example:
            ```python
            engine = LocalEngine(python_executable="/usr/bin/python3")
            ```
        """
        executable = (python_executable if python_executable is not None else sys.executable).strip()
        if not executable:
            raise ValueError("LocalEngine requires a non-empty 'python_executable'")
        if startup_grace_seconds <= 0:
            raise ValueError("startup_grace_seconds must be positive")
        self._python_executable = executable
        self._startup_grace_seconds = startup_grace_seconds

    def execute(
        self,
        request: WorkerRequest,
        on_log: Callable[..., Any] | None = None,
    ) -> WorkerOutcome:
        """Run one request in a worker process under the request's budget.

        Example:
            ```python
            outcome = engine.execute(WorkerRequest(payload={"code": "set_result(1)"}, timeout_ms=5000))
            ```
        """
        cmd = [self._python_executable, "-m", WORKER_MODULE]
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                env=_worker_env(),
            )
        except OSError as exc:
            return WorkerOutcome(returncode=127, error=f"Failed to start worker: {exc}")

        outcome = WorkerOutcome()
        ready = threading.Event()
        stderr_chunks: list[str] = []
        reader = threading.Thread(
            target=self._read_events,
            args=(proc.stdout, outcome, ready, on_log),
            daemon=True,
        )
        stderr_reader = threading.Thread(
            target=self._read_stderr,
            args=(proc.stderr, stderr_chunks),
            daemon=True,
        )
        reader.start()
        stderr_reader.start()
        logger.debug("worker %s started for %sms budget", proc.pid, request.timeout_ms)

        try:
            assert proc.stdin is not None
            proc.stdin.write(json.dumps(request.payload, default=str))
            proc.stdin.close()
        except (BrokenPipeError, OSError) as exc:
            logger.debug("worker %s closed stdin early: %s", proc.pid, exc)

        try:
            if not ready.wait(self._startup_grace_seconds):
                proc.kill()
                proc.wait()
                outcome.returncode = proc.returncode
                outcome.error = (
                    f"Worker did not start within {self._startup_grace_seconds:g}s"
                )
                return outcome
            try:
                proc.wait(timeout=request.timeout_ms / 1000)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                outcome.timed_out = True
                logger.warning(
                    "worker %s killed after exceeding %sms budget", proc.pid, request.timeout_ms
                )
            outcome.returncode = proc.returncode
            return outcome
        finally:
            reader.join(timeout=self._startup_grace_seconds)
            stderr_reader.join(timeout=self._startup_grace_seconds)
            outcome.stderr = "".join(stderr_chunks)

    @staticmethod
    def _read_events(
        stream: IO[str] | None,
        outcome: WorkerOutcome,
        ready: threading.Event,
        on_log: Callable[..., Any] | None,
    ) -> None:
        """Consume worker events in arrival order until EOF.

        Example:
            ```python
            LocalEngine._read_events(proc.stdout, outcome, ready, None)
            ```
        """
        try:
            if stream is None:
                return
            for line in stream:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("ignoring non-protocol worker output: %r", line[:200])
                    continue
                kind = event.get("event") if isinstance(event, dict) else None
                if kind == "ready":
                    ready.set()
                elif kind == "log":
                    args = event.get("args") or []
                    outcome.logs.append(args)
                    if on_log is not None:
                        try:
                            on_log(*args)
                        except Exception:
                            logger.exception("log sink raised while forwarding worker output")
                elif kind == "done":
                    outcome.final = event
        finally:
            ready.set()

    @staticmethod
    def _read_stderr(stream: IO[str] | None, chunks: list[str]) -> None:
        """Drain worker stderr so the pipe never blocks the worker.

        Example:
            ```python
            LocalEngine._read_stderr(proc.stderr, chunks)
            ```
        """
        if stream is None:
            return
        chunks.append(stream.read())
