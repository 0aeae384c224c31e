"""Exception types raised by the voice agent core."""


class VoiceAgentError(Exception):
    """Base class for errors raised by this package."""


class ConfigError(VoiceAgentError, ValueError):
    """Configuration is unusable (raised at startup)."""


class ProviderError(VoiceAgentError):
    """An LLM or TTS provider failed (network, HTTP status, bad stream)."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class StreamStateError(VoiceAgentError):
    """More than one audio stream would be live for a single session."""
