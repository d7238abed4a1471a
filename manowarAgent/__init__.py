"""Top-level package exports for manowarAgent."""

from .runtime.orchestrator import Orchestrator, RunHandle, RunResult

__all__ = ["Orchestrator", "RunHandle", "RunResult"]
