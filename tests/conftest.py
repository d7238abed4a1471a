"""Pytest configuration and fixtures for all tests.

Collaborators are served by ``httpx.MockTransport`` backed by ``FakeServices``
(see tests/support.py).
"""

import sys
from pathlib import Path

import httpx
import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from manowarAgent.clients import (  # noqa: E402
    AgentClient,
    Collaborators,
    InferenceClient,
    MemoryClient,
    ModelSpecClient,
    RegistryClient,
    ToolClient,
)
from manowarAgent.config.settings import (  # noqa: E402
    ContextSettings,
    GovernanceSettings,
    ModelRoutingSettings,
    ObservabilitySettings,
    PersistenceSettings,
    ServiceSettings,
    Settings,
)
from manowarAgent.context.model_specs import ModelSpecCache  # noqa: E402
from manowarAgent.tools.workflow import parse_workflow  # noqa: E402

from tests.support import (  # noqa: E402
    COORDINATOR_MODEL,
    EVALUATOR_MODEL,
    LAMBDA_URL,
    MCP_URL,
    SUMMARIZER_MODEL,
    FakeServices,
)


@pytest.fixture
def settings():
    """Settings with explicit values so the local environment does not leak in."""
    return Settings(
        models=ModelRoutingSettings(
            coordinator=COORDINATOR_MODEL,
            coordinator_api_key="test-key",
            summarizer=SUMMARIZER_MODEL,
            evaluator=EVALUATOR_MODEL,
        ),
        governance=GovernanceSettings(
            max_round_trips=10,
            max_coordinator_retries=2,
            max_loops=1,
            step_timeout_seconds=5,
            checkpoint_timeout_seconds=5,
        ),
        context=ContextSettings(cleanup_threshold=80, effective_window_ratio=0.70, default_context_window=32000),
        services=ServiceSettings(lambda_api_url=LAMBDA_URL, mcp_url=MCP_URL, http_timeout_seconds=5),
        persistence=PersistenceSettings(checkpoint_backend="memory", max_runs_per_workflow=100),
        observability=ObservabilitySettings(tracing_enabled=False, log_dir=None),
    )


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def collaborators(services):
    client = httpx.AsyncClient(transport=httpx.MockTransport(services.handler))
    return Collaborators(
        inference=InferenceClient(LAMBDA_URL, client=client),
        tools=ToolClient(MCP_URL, client=client),
        agents=AgentClient(LAMBDA_URL, client=client),
        memory=MemoryClient(LAMBDA_URL, client=client),
        model_specs=ModelSpecClient(LAMBDA_URL, client=client),
        registry=RegistryClient(MCP_URL, client=client),
    )


@pytest.fixture
def spec_cache(settings, collaborators):
    cache = ModelSpecCache.from_settings(settings, collaborators.model_specs)
    cache.prime(COORDINATOR_MODEL, effective_window=8000)
    return cache


@pytest.fixture
def workflow():
    return parse_workflow({
        "id": "wf-research",
        "name": "Research Brief",
        "description": "Search the web and write a short brief.",
        "steps": [
            {
                "name": "web_search",
                "type": "tool",
                "tool_id": "search-tool",
                "description": "Search the web",
                "parameters": {
                    "type": "object",
                    "properties": {"query": {"type": "string"}},
                    "required": ["query"],
                },
            },
            {
                "name": "writer",
                "type": "agent",
                "agent_id": "writer-agent",
                "description": "Writes the brief",
                "depends_on": ["web_search"],
            },
        ],
    })
