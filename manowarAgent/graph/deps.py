"""Per-run dependencies injected into graph node builders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from manowarAgent.clients import Collaborators
from manowarAgent.config.settings import Settings
from manowarAgent.context.curator import MemoryCurator
from manowarAgent.context.token_ledger import TokenLedger
from manowarAgent.context.window_monitor import ContextWindowMonitor
from manowarAgent.tools.bindings import ToolBindingManager
from manowarAgent.tools.workflow import WorkflowDefinition


@dataclass(slots=True)
class RunDependencies:
    """Everything one run's nodes need; nothing here is shared across runs except clients and caches."""

    settings: Settings
    workflow: WorkflowDefinition
    bindings: ToolBindingManager
    ledger: TokenLedger
    collaborators: Collaborators
    monitor: ContextWindowMonitor
    curator: MemoryCurator
    coordinator_model: Any
    coordinator_model_id: str

    @property
    def step_timeout(self) -> float:
        return self.settings.governance.step_timeout_seconds

    @property
    def memory_agent_id(self) -> str:
        return f"manowar-{self.workflow.id}"
