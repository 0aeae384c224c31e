"""LLM-callable tools for the lead qualification conversation."""

from .base import BaseTool
from .lead_capture import (
    LEAD_CAPTURE_TOOLS,
    CaptureLeadInfoTool,
    EndConversationTool,
    ScheduleCallbackTool,
    validate_arguments,
)

__all__ = [
    "LEAD_CAPTURE_TOOLS",
    "BaseTool",
    "CaptureLeadInfoTool",
    "EndConversationTool",
    "ScheduleCallbackTool",
    "validate_arguments",
]
