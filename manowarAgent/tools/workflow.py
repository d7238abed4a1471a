"""Workflow definitions loaded from YAML."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from manowarAgent.tools.schema import ObjectParam
from manowarAgent.utils.error_handler import ConfigurationError

_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

DELEGATE_PREFIX = "delegate_to_"
SEARCH_SOLUTIONS_TOOL = "search_workflow_solutions"
SAVE_SOLUTION_TOOL = "save_workflow_solution"
BUILTIN_TOOL_NAMES = (SEARCH_SOLUTIONS_TOOL, SAVE_SOLUTION_TOOL)


def sanitize_tool_name(name: str) -> str:
    """Function names allowed by tool-calling APIs: ``[a-zA-Z0-9_]``."""
    return _NAME_RE.sub("_", name.strip()) or "tool"


class WorkflowStep(BaseModel):
    """One statically declared agent or tool."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    type: Literal["agent", "tool"]
    target_id: str = Field(validation_alias=AliasChoices("target_id", "agent_id", "tool_id", "id"))
    description: str = ""
    parameters: Optional[ObjectParam] = None
    depends_on: List[str] = Field(default_factory=list)
    model: Optional[str] = None

    @property
    def binding_name(self) -> str:
        """Name the coordinator model calls this step by."""
        base = sanitize_tool_name(self.name)
        return f"{DELEGATE_PREFIX}{base}" if self.type == "agent" else base


class WorkflowDefinition(BaseModel):
    """Static description of a workflow and its per-workflow overrides."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)
    coordinator_model: Optional[str] = None
    cleanup_threshold: Optional[float] = Field(default=None, gt=0, le=100)
    max_round_trips: Optional[int] = Field(default=None, ge=1)
    max_loops: Optional[int] = Field(default=None, ge=1)
    memory_tools: bool = True

    @field_validator("steps")
    @classmethod
    def _unique_step_names(cls, steps: List[WorkflowStep]) -> List[WorkflowStep]:
        seen = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"duplicate step name: {step.name}")
            seen.add(step.name)
        return steps

    @model_validator(mode="after")
    def _known_dependencies(self) -> "WorkflowDefinition":
        names = {step.name for step in self.steps}
        for step in self.steps:
            unknown = [dep for dep in step.depends_on if dep not in names]
            if unknown:
                raise ValueError(f"step {step.name} depends on unknown steps: {unknown}")
        return self

    @model_validator(mode="after")
    def _distinct_binding_names(self) -> "WorkflowDefinition":
        owners: Dict[str, str] = {}
        if self.memory_tools:
            owners.update({name: "builtin memory tool" for name in BUILTIN_TOOL_NAMES})
        for step in self.steps:
            name = step.binding_name
            if name in owners:
                raise ValueError(f"step {step.name} binds as {name}, already taken by {owners[name]}")
            owners[name] = f"step {step.name}"
        return self


def parse_workflow(data: Dict[str, Any]) -> WorkflowDefinition:
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid workflow definition: {e}") from e


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Load a workflow definition from a YAML file.

    Raises:
        ConfigurationError: unreadable file or invalid definition
    """
    workflow_path = Path(path)
    try:
        with open(workflow_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load workflow {workflow_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Workflow file {workflow_path} must contain a mapping")
    return parse_workflow(data)
