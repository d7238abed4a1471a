"""Tool bindings: the immutable workflow set and the suggested set.

Workflow bindings come from the workflow definition and are the only ones the
tool executor may dispatch. Suggested bindings come from the tool-boxing pass
and are shown to the coordinator model for situational awareness only.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from manowarAgent.tools.schema import ObjectParam, StringParam, validate_arguments
from manowarAgent.tools.workflow import (
    SAVE_SOLUTION_TOOL,
    SEARCH_SOLUTIONS_TOOL,
    WorkflowDefinition,
    sanitize_tool_name,
)

LOGGER = logging.getLogger("manowar.tools")

BindingOrigin = Literal["workflow", "suggested"]
BindingTarget = Literal["tool", "agent", "builtin"]


@dataclass(frozen=True, slots=True)
class ToolBinding:
    """A callable exposed to the coordinator model."""

    name: str
    description: str
    parameters: ObjectParam
    origin: BindingOrigin
    target: BindingTarget
    target_id: str
    depends_on: Tuple[str, ...] = ()

    def to_openai_function(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.name,
                "parameters": self.parameters.json_schema(),
            },
        }


@dataclass(slots=True)
class ToolRecommendation:
    """A registry tool proposed by the tool-boxing pass."""

    registry_id: str
    name: str
    description: str = ""
    spawn_params: Optional[Dict[str, Any]] = None
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ToolRecommendation":
        return cls(
            registry_id=str(data.get("registry_id") or data.get("registryId") or data.get("name", "")),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            spawn_params=data.get("spawn_params") or data.get("spawnParams"),
            confidence=float(data.get("confidence", 0.0)),
        )


def _task_parameters() -> ObjectParam:
    return ObjectParam(
        properties={"task": StringParam(description="The sub-task for the agent, with all needed context")},
        required=["task"],
    )


def memory_tool_bindings() -> List[ToolBinding]:
    """Builtin solution-pattern tools backed by long-term memory."""
    return [
        ToolBinding(
            name=SEARCH_SOLUTIONS_TOOL,
            description="Search previously saved solutions for similar tasks in this workflow.",
            parameters=ObjectParam(
                properties={"query": StringParam(description="What kind of solution to look for")},
                required=["query"],
            ),
            origin="workflow",
            target="builtin",
            target_id=SEARCH_SOLUTIONS_TOOL,
        ),
        ToolBinding(
            name=SAVE_SOLUTION_TOOL,
            description="Save a successful solution pattern for future runs of this workflow.",
            parameters=ObjectParam(
                properties={
                    "pattern": StringParam(description="The approach that worked"),
                    "outcome": StringParam(description="What it achieved"),
                },
                required=["pattern"],
            ),
            origin="workflow",
            target="builtin",
            target_id=SAVE_SOLUTION_TOOL,
        ),
    ]


def workflow_bindings_from(workflow: WorkflowDefinition) -> List[ToolBinding]:
    """Agent steps become ``delegate_to_<name>`` bindings, tool steps keep their name."""
    names = {step.name: step.binding_name for step in workflow.steps}

    bindings: List[ToolBinding] = []
    for step in workflow.steps:
        if step.type == "agent":
            description = step.description or f"Delegate a sub-task to the {step.name} agent."
            parameters = step.parameters or _task_parameters()
        else:
            description = step.description or f"Run the {step.name} tool."
            parameters = step.parameters or ObjectParam()
        bindings.append(ToolBinding(
            name=names[step.name],
            description=description,
            parameters=parameters,
            origin="workflow",
            target=step.type,
            target_id=step.target_id,
            depends_on=tuple(names[dep] for dep in step.depends_on),
        ))

    if workflow.memory_tools:
        bindings.extend(memory_tool_bindings())
    return bindings


class ToolBindingManager:
    """Partitions tools into the workflow set and the suggested set."""

    def __init__(self, workflow_bindings: Iterable[ToolBinding]):
        bindings: Dict[str, ToolBinding] = {}
        for binding in workflow_bindings:
            if binding.origin != "workflow":
                raise ValueError(f"{binding.name} is not a workflow binding")
            if binding.name in bindings:
                raise ValueError(f"duplicate tool binding: {binding.name}")
            bindings[binding.name] = binding
        self._workflow: Dict[str, ToolBinding] = bindings
        self._suggested: Dict[str, ToolBinding] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_workflow(cls, workflow: WorkflowDefinition) -> "ToolBindingManager":
        return cls(workflow_bindings_from(workflow))

    def workflow_bindings(self) -> Tuple[ToolBinding, ...]:
        return tuple(self._workflow.values())

    def suggested_bindings(self) -> Tuple[ToolBinding, ...]:
        with self._lock:
            return tuple(self._suggested.values())

    def set_suggestions(
        self, recommendations: Iterable[Union[ToolRecommendation, Mapping[str, Any]]]
    ) -> Tuple[ToolBinding, ...]:
        """Replace the suggested set. Names clashing with workflow tools are dropped."""
        suggested: Dict[str, ToolBinding] = {}
        for rec in recommendations or ():
            if not isinstance(rec, ToolRecommendation):
                rec = ToolRecommendation.from_dict(rec)
            name = sanitize_tool_name(rec.name or rec.registry_id)
            if name in self._workflow:
                LOGGER.debug(f"Suggested tool {name} shadows a workflow tool, skipped")
                continue
            suggested[name] = ToolBinding(
                name=name,
                description=rec.description or name,
                parameters=ObjectParam(),
                origin="suggested",
                target="tool",
                target_id=rec.registry_id,
            )
        with self._lock:
            self._suggested = suggested
        return tuple(suggested.values())

    def coordinator_tools(self) -> List[Dict[str, Any]]:
        """Workflow and suggested bindings in OpenAI function format."""
        return [b.to_openai_function() for b in (*self.workflow_bindings(), *self.suggested_bindings())]

    def executable(self, name: str) -> Optional[ToolBinding]:
        """The workflow binding for ``name``; suggested tools are never executable."""
        return self._workflow.get(name)

    def lookup(self, name: str) -> Optional[ToolBinding]:
        with self._lock:
            return self._workflow.get(name) or self._suggested.get(name)

    @staticmethod
    def validate_arguments(binding: ToolBinding, args: Any) -> Dict[str, Any]:
        return validate_arguments(binding.parameters, args, binding.name)
