"""Event sinks the run driver hands step events to."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from manowarAgent.clients.memory import MemoryClient
from manowarAgent.graph.events import StepEvent
from manowarAgent.utils.error_handler import ExternalCallError

LOGGER = logging.getLogger("manowar.events")


class EventSink(Protocol):
    async def emit(self, event: StepEvent) -> None:
        ...


class LoggingEventSink:
    """Render events into the ``manowar.events`` log."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or LOGGER

    async def emit(self, event: StepEvent) -> None:
        payload = event.payload
        if event.kind == "message_added":
            content = str(payload.get("content", ""))
            if len(content) > 200:
                content = content[:200] + "..."
            self.logger.info(f"[{event.run_id}] {event.phase} +{payload.get('role', '?')}: {content}")
        elif event.kind == "tool_invoked":
            status = payload.get("status", "?")
            level = logging.INFO if status == "success" else logging.WARNING
            self.logger.log(level, f"[{event.run_id}] tool {payload.get('tool')} → {status}")
        elif event.kind in ("run_failed", "step_failed", "wipe_aborted"):
            self.logger.error(f"[{event.run_id}] {event.kind} at {event.phase}: {payload.get('error')}")
        else:
            self.logger.info(f"[{event.run_id}] {event.kind} at {event.phase} {payload}")


class MemoryEventWriter:
    """Forward finished runs to long-term memory so later runs can search them."""

    def __init__(self, memory: MemoryClient, workflow_id: str):
        self.memory = memory
        self.workflow_id = workflow_id

    async def emit(self, event: StepEvent) -> None:
        if event.kind != "run_completed":
            return
        payload = event.payload
        try:
            await self.memory.add(
                [
                    {"role": "user", "content": str(payload.get("goal", ""))},
                    {"role": "assistant", "content": str(payload.get("final_output", ""))},
                ],
                agent_id=f"manowar-{self.workflow_id}",
                run_id=event.run_id,
                metadata={
                    "type": "run_completed",
                    "workflow_id": self.workflow_id,
                    "total_tokens": payload.get("total_tokens", 0),
                    "cost_wei": payload.get("cost_wei", 0),
                },
            )
        except ExternalCallError as e:
            LOGGER.warning(f"Failed to record run {event.run_id} in memory: {e}")
