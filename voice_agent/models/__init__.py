"""Data models for the voice agent core."""

from .lead import (
    QUALIFICATION_WEIGHTS,
    BudgetRange,
    LeadInfo,
    PropertyPreferences,
    calculate_qualification_score,
)
from .session import ConversationMessage, ConversationStage, MessageRole, SessionState
from .tools import ToolCall, ToolDefinition

__all__ = [
    "QUALIFICATION_WEIGHTS",
    "BudgetRange",
    "ConversationMessage",
    "ConversationStage",
    "LeadInfo",
    "MessageRole",
    "PropertyPreferences",
    "SessionState",
    "ToolCall",
    "ToolDefinition",
    "calculate_qualification_score",
]
