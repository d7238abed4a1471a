"""HTTP clients for the orchestrator's external collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from manowarAgent.clients.base import ServiceClient
from manowarAgent.clients.execution import AgentClient, AgentReply, ToolClient
from manowarAgent.clients.inference import InferenceClient, InferenceResult
from manowarAgent.clients.memory import MemoryClient
from manowarAgent.clients.registry import ModelSpecClient, RegistryClient


@dataclass(slots=True)
class Collaborators:
    """Bundle of collaborator clients injected into the engine."""
    inference: InferenceClient
    tools: ToolClient
    agents: AgentClient
    memory: MemoryClient
    model_specs: ModelSpecClient
    registry: Optional[RegistryClient] = None

    @classmethod
    def from_settings(cls, settings) -> "Collaborators":
        services = settings.services
        timeout = services.http_timeout_seconds
        return cls(
            inference=InferenceClient(services.lambda_api_url, timeout=timeout),
            tools=ToolClient(services.mcp_url, timeout=timeout),
            agents=AgentClient(services.lambda_api_url, timeout=timeout),
            memory=MemoryClient(services.lambda_api_url, timeout=timeout),
            model_specs=ModelSpecClient(services.lambda_api_url, timeout=timeout),
            registry=RegistryClient(services.mcp_url, timeout=timeout),
        )

    async def aclose(self) -> None:
        for client in (self.inference, self.tools, self.agents, self.memory, self.model_specs, self.registry):
            if client is not None:
                await client.aclose()


__all__ = [
    "AgentClient",
    "AgentReply",
    "Collaborators",
    "InferenceClient",
    "InferenceResult",
    "MemoryClient",
    "ModelSpecClient",
    "RegistryClient",
    "ServiceClient",
    "ToolClient",
]
