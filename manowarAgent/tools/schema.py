"""Tool parameter schemas.

A closed set of parameter kinds, discriminated on ``type``. Arguments coming
from the model are checked against these before any call is dispatched.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from manowarAgent.utils.error_handler import ToolValidationError


class _Param(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    description: str = ""

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}  # type: ignore[attr-defined]
        if self.description:
            schema["description"] = self.description
        return schema

    def check(self, value: Any, path: str, errors: List[str]) -> None:
        raise NotImplementedError


class StringParam(_Param):
    type: Literal["string"] = "string"
    enum: Optional[List[str]] = None

    def json_schema(self) -> Dict[str, Any]:
        schema = super().json_schema()
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema

    def check(self, value, path, errors):
        if not isinstance(value, str):
            errors.append(f"{path}: expected string, got {type(value).__name__}")
        elif self.enum and value not in self.enum:
            errors.append(f"{path}: {value!r} is not one of {self.enum}")


class NumberParam(_Param):
    type: Literal["number"] = "number"

    def check(self, value, path, errors):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path}: expected number, got {type(value).__name__}")


class IntegerParam(_Param):
    type: Literal["integer"] = "integer"

    def check(self, value, path, errors):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path}: expected integer, got {type(value).__name__}")


class BooleanParam(_Param):
    type: Literal["boolean"] = "boolean"

    def check(self, value, path, errors):
        if not isinstance(value, bool):
            errors.append(f"{path}: expected boolean, got {type(value).__name__}")


class ArrayParam(_Param):
    type: Literal["array"] = "array"
    items: Optional["ParameterSchema"] = None

    def json_schema(self) -> Dict[str, Any]:
        schema = super().json_schema()
        schema["items"] = self.items.json_schema() if self.items is not None else {}
        return schema

    def check(self, value, path, errors):
        if not isinstance(value, list):
            errors.append(f"{path}: expected array, got {type(value).__name__}")
            return
        if self.items is not None:
            for index, item in enumerate(value):
                self.items.check(item, f"{path}[{index}]", errors)


class ObjectParam(_Param):
    type: Literal["object"] = "object"
    properties: Dict[str, "ParameterSchema"] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additional_properties: bool = Field(
        default=True, validation_alias=AliasChoices("additional_properties", "additionalProperties")
    )

    def json_schema(self) -> Dict[str, Any]:
        schema = super().json_schema()
        schema["properties"] = {name: prop.json_schema() for name, prop in self.properties.items()}
        if self.required:
            schema["required"] = list(self.required)
        if not self.additional_properties:
            schema["additionalProperties"] = False
        return schema

    def check(self, value, path, errors):
        if not isinstance(value, dict):
            errors.append(f"{path}: expected object, got {type(value).__name__}")
            return
        for name in self.required:
            if name not in value:
                errors.append(f"{path}.{name}: required field missing")
        for name, item in value.items():
            prop = self.properties.get(name)
            if prop is not None:
                prop.check(item, f"{path}.{name}", errors)
            elif not self.additional_properties:
                errors.append(f"{path}.{name}: unexpected field")


ParameterSchema = Annotated[
    Union[StringParam, NumberParam, IntegerParam, BooleanParam, ArrayParam, ObjectParam],
    Field(discriminator="type"),
]

ArrayParam.model_rebuild()
ObjectParam.model_rebuild()

_ADAPTER = TypeAdapter(ParameterSchema)


def parse_schema(data: Any) -> _Param:
    """Build a schema from its JSON-Schema-like dict form."""
    if isinstance(data, _Param):
        return data
    return _ADAPTER.validate_python(data)


def validate_arguments(schema: ObjectParam, args: Any, tool_name: str = "tool") -> Dict[str, Any]:
    """Validate tool-call arguments; returns them unchanged when valid.

    Raises:
        ToolValidationError: with every violation found
    """
    errors: List[str] = []
    schema.check(args, "args", errors)
    if errors:
        raise ToolValidationError(
            f"Invalid arguments for {tool_name}: " + "; ".join(errors),
            user_message=f"参数校验失败：{'; '.join(errors)}",
        )
    return dict(args)
