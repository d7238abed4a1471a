"""Run driver, run tracking and runtime wiring."""

from .events import EventSink, LoggingEventSink, MemoryEventWriter
from .model_resolver import build_model_resolver, resolve_coordinator_config
from .orchestrator import Orchestrator, RunHandle, RunResult
from .run_tracker import RunTracker, TrackedRun, TriggerInfo
from .tracing import configure_tracing

__all__ = [
    "EventSink",
    "LoggingEventSink",
    "MemoryEventWriter",
    "Orchestrator",
    "RunHandle",
    "RunResult",
    "RunTracker",
    "TrackedRun",
    "TriggerInfo",
    "build_model_resolver",
    "configure_tracing",
    "resolve_coordinator_config",
]
