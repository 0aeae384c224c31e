"""Provider interfaces and the bundled LLM adapters."""

from voice_agent.config import Settings, settings

from .base import (
    CompleteEvent,
    LLMEvent,
    LLMProvider,
    TokenEvent,
    ToolCallEvent,
    TranscriptEvent,
    TranscriptSource,
    TTSProvider,
)
from .fallback import FallbackLLM
from .openai_compat import OpenAICompatibleLLM


def create_llm(config: Settings = settings) -> LLMProvider:
    """Build the configured LLM, wrapped with a fallback model if one is set."""
    primary = OpenAICompatibleLLM(
        model=config.llm_model,
        base_url=config.llm_base_url,
        api_key=config.llm_api_key,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
        timeout_s=config.llm_timeout_s,
    )
    if not config.llm_fallback_model:
        return primary
    fallback = OpenAICompatibleLLM(
        model=config.llm_fallback_model,
        base_url=config.llm_base_url,
        api_key=config.llm_api_key,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
        timeout_s=config.llm_timeout_s,
    )
    return FallbackLLM(primary, fallback)


__all__ = [
    "CompleteEvent",
    "FallbackLLM",
    "LLMEvent",
    "LLMProvider",
    "OpenAICompatibleLLM",
    "TTSProvider",
    "TokenEvent",
    "ToolCallEvent",
    "TranscriptEvent",
    "TranscriptSource",
    "create_llm",
]
