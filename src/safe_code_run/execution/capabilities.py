from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineCapabilities:
    """Capability flags advertised by an execution engine.

    Example:
        ```python
        caps = EngineCapabilities(True, True, True)
        ```
    """

    supports_hard_timeout: bool
    supports_memory_limit: bool
    supports_log_streaming: bool


def capabilities_for_engine(engine: str) -> EngineCapabilities:
    """Return capability flags for an engine name.

    Example:
        ```python
        caps = capabilities_for_engine("localengine")
        ```
    """
    if engine in {"local", "localengine"}:
        return EngineCapabilities(True, True, True)
    return EngineCapabilities(False, False, False)


def preflight_validate_engine_capabilities(engine: str) -> EngineCapabilities:
    """Check an engine before use and warn about missing guarantees.

    Example:
        ```python
        caps = preflight_validate_engine_capabilities("local")
        ```
    """
    caps = capabilities_for_engine(engine)
    if not caps.supports_hard_timeout:
        logger.warning(
            "engine %r cannot terminate timed-out code; it may keep running after the budget",
            engine,
        )
    if not caps.supports_memory_limit:
        logger.warning("engine %r does not enforce the policy memory limit", engine)
    if not caps.supports_log_streaming:
        logger.info("engine %r reports output only after the run; on_log is called late", engine)
    return caps
