"""Primary/fallback LLM composition."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from voice_agent.errors import ProviderError
from voice_agent.models.session import ConversationMessage
from voice_agent.models.tools import ToolDefinition
from voice_agent.providers.base import LLMEvent, LLMProvider

log = logging.getLogger("voice_agent.providers.fallback")


class FallbackLLM(LLMProvider):
    """Use ``primary``; on a provider failure before any output, retry on ``fallback``.

    Once the primary has produced an event the caller may already have spoken
    it, so a later failure propagates instead of restarting the response.
    """

    def __init__(self, primary: LLMProvider, fallback: LLMProvider) -> None:
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}|{fallback.name}"

    async def generate_streaming(
        self,
        messages: list[ConversationMessage],
        system_prompt: str,
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[LLMEvent]:
        produced = False
        try:
            async for event in self.primary.generate_streaming(messages, system_prompt, tools):
                produced = True
                yield event
            return
        except ProviderError as exc:
            if produced:
                raise
            log.warning("Primary LLM failed, trying fallback: %s", exc)

        async for event in self.fallback.generate_streaming(messages, system_prompt, tools):
            yield event

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.fallback.aclose()
