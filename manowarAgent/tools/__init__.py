"""Tool bindings, parameter schemas and workflow definitions."""

from manowarAgent.tools.bindings import (
    ToolBinding,
    ToolBindingManager,
    ToolRecommendation,
    memory_tool_bindings,
    workflow_bindings_from,
)
from manowarAgent.tools.schema import ParameterSchema, parse_schema, validate_arguments
from manowarAgent.tools.workflow import WorkflowDefinition, WorkflowStep, load_workflow, parse_workflow

__all__ = [
    "ParameterSchema",
    "ToolBinding",
    "ToolBindingManager",
    "ToolRecommendation",
    "WorkflowDefinition",
    "WorkflowStep",
    "load_workflow",
    "memory_tool_bindings",
    "parse_schema",
    "parse_workflow",
    "validate_arguments",
    "workflow_bindings_from",
]
