"""Tool definitions sent to the model.

Builds the ``tools`` array for an agent: the output tool (whose schema is the
agent's output model), each helper tool, and, in reflection mode, the
``submit`` tool.

Example::

    tools = build_tool_definitions(agent)
    payload = [t.to_anthropic_format() for t in tools]
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from .definition import AgentDefinition

logger = logging.getLogger("agentry.tools_schema")

SUBMIT_TOOL_NAME = "submit"
SUBMIT_TOOL_DESCRIPTION = "Submit your final output for validation. Call this when you are satisfied with your output."


class ToolKind(str, enum.Enum):
    output = "output"
    helper = "helper"
    submit = "submit"


def model_input_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON Schema for a pydantic model, usable as a tool ``input_schema``."""
    schema = model.model_json_schema()
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


@dataclass(frozen=True)
class ToolDefinition:
    """Describes a single tool the model can invoke.

    Attributes:
        name: Unique tool identifier.
        description: Human-readable description shown to the model.
        parameters: JSON Schema describing the tool input.
        kind: Role of the tool within the agent protocol.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    kind: ToolKind = ToolKind.helper

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_anthropic_format(self) -> dict[str, Any]:
        """Serialise to Anthropic ``tools`` array element format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


def submit_tool_definition() -> ToolDefinition:
    return ToolDefinition(
        name=SUBMIT_TOOL_NAME,
        description=SUBMIT_TOOL_DESCRIPTION,
        parameters={"type": "object", "properties": {}, "required": []},
        kind=ToolKind.submit,
    )


def build_tool_definitions(definition: AgentDefinition) -> list[ToolDefinition]:
    """Return the output tool, then helpers, then ``submit`` in reflection mode."""
    tools = [
        ToolDefinition(
            name=definition.output_tool.name,
            description=definition.output_tool.description,
            parameters=model_input_schema(definition.output_schema),
            kind=ToolKind.output,
        )
    ]
    for helper in definition.helpers.values():
        tools.append(
            ToolDefinition(
                name=helper.name,
                description=helper.description,
                parameters=model_input_schema(helper.input_schema),
                kind=ToolKind.helper,
            )
        )
    if definition.reflection_enabled:
        tools.append(submit_tool_definition())
    logger.debug("Built %d tool definition(s) for agent %r", len(tools), definition.name)
    return tools
