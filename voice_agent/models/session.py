"""Session aggregate: lead, message history and conversation stage."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from voice_agent.models.lead import LeadInfo


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationStage(str, Enum):
    GREETING = "greeting"
    INTRODUCTION = "introduction"
    NEEDS_DISCOVERY = "needs_discovery"
    QUALIFICATION = "qualification"
    PROPERTY_DISCUSSION = "property_discussion"
    NEXT_STEPS = "next_steps"
    CLOSING = "closing"
    FOLLOW_UP = "follow_up"


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    """Per-session aggregate root.

    Created when a call starts and held for the life of the call.  Saving it
    between calls is the caller's job; ``resume()`` is what a reconnecting
    caller's restored state goes through.
    """

    session_id: str
    lead_info: LeadInfo = Field(default_factory=LeadInfo)
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    current_stage: ConversationStage = ConversationStage.GREETING
    call_count: int = 1
    last_call_at: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def new(cls, session_id: str, phone: str | None = None) -> "SessionState":
        """Fresh session for a first-time caller."""
        return cls(
            session_id=session_id,
            lead_info=LeadInfo(phone=phone or None),
            last_call_at=datetime.now(timezone.utc),
        )

    def resume(self) -> None:
        """Reactivate a restored session for a returning caller."""
        self.call_count += 1
        self.last_call_at = datetime.now(timezone.utc)
        self.is_active = True

    @property
    def is_returning(self) -> bool:
        return self.call_count > 1

    def add_message(self, role: MessageRole, content: str, **metadata: Any) -> ConversationMessage:
        message = ConversationMessage(role=role, content=content, metadata=metadata)
        self.conversation_history.append(message)
        return message
