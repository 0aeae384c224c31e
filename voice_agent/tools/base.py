"""Base class for LLM-callable tools that act on the session state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from voice_agent.models.session import SessionState
from voice_agent.models.tools import ToolDefinition


class BaseTool(ABC):
    """A tool the LLM may call mid-response.

    Tools run synchronously between LLM events: the state they mutate is
    visible to the rest of the turn before the next token is handled.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters_schema(self) -> dict: ...

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema,
        )

    @abstractmethod
    def execute(self, state: SessionState, arguments: dict[str, Any]) -> str:
        """Apply the call to ``state`` and return a short result summary."""
