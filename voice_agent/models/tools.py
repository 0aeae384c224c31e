"""Pydantic models for LLM tool definitions and invocations."""

from typing import Any

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """A function the LLM may call, described with a JSON schema."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolCall(BaseModel):
    """One tool invocation surfaced by the LLM stream."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
