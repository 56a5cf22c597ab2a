"""Descriptor of a tool discovered on a tool server."""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class ToolDescriptor(BaseModel):
    """A tool offered by one tool server.

    Attributes:
        name: Tool name as known by its server.
        description: What the tool does.
        input_schema: JSON schema of the tool's arguments, normalized to an object root.
        server_id: Id of the server that owns the tool.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    server_id: str

    @property
    def qualified_name(self) -> str:
        return f"{self.server_id}.{self.name}"
