"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

from voice_agent.errors import ConfigError

log = logging.getLogger("voice_agent.config")


class Settings(BaseSettings):
    # LLM (any OpenAI-compatible endpoint; defaults to a local Ollama)
    llm_base_url: str = "http://localhost:11434/v1"
    llm_model: str = "qwen2.5:7b"
    llm_fallback_model: str = ""
    llm_api_key: str = ""
    llm_temperature: float = 0.7
    llm_max_tokens: int = 500
    llm_timeout_s: float = 30.0
    # Messages sent to the LLM per turn; the session history itself is never trimmed
    max_history_messages: int = 30

    # Speech: TTS output is PCM 16kHz mono int16
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16
    # Unplayed audio allowed ahead of the wall clock
    tts_buffer_ms: float = 250.0
    # Sleeps shorter than this are skipped (timer jitter dominates)
    pacer_min_sleep_ms: float = 5.0

    # Text chunking: clause splits need at least this many words
    min_chunk_words: int = 10

    # Barge-in (fallback energy detector)
    barge_in_enabled: bool = True
    barge_in_energy_threshold: float = 0.02
    barge_in_min_frames: int = 3
    barge_in_cooldown_ms: float = 1000.0
    # STT provider emits its own start-of-turn events; fallback detector is ignored
    native_turn_detection: bool = False

    # Persona
    agent_name: str = "Alex"
    agency_name: str = "KeyReply Properties"

    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * self.bits_per_sample // 8

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if self.bits_per_sample not in (8, 16, 24, 32):
            raise ConfigError(
                f"BITS_PER_SAMPLE={self.bits_per_sample} is not a PCM sample width."
            )
        if self.sample_rate <= 0 or self.channels <= 0:
            raise ConfigError("SAMPLE_RATE and CHANNELS must be positive.")
        if self.min_chunk_words < 1:
            raise ConfigError("MIN_CHUNK_WORDS must be at least 1.")
        if not 0.0 < self.barge_in_energy_threshold < 1.0:
            raise ConfigError(
                "BARGE_IN_ENERGY_THRESHOLD is on a 0-1 RMS scale "
                f"(got {self.barge_in_energy_threshold})."
            )

        if not self.llm_base_url.startswith(("http://localhost", "http://127.0.0.1")):
            if not self.llm_api_key:
                warnings.append(
                    "LLM_API_KEY not set for a remote LLM endpoint. Requests may be rejected."
                )

        if self.tts_buffer_ms < 100:
            warnings.append(
                f"TTS_BUFFER_MS={self.tts_buffer_ms:.0f} leaves little room for network jitter."
            )
        elif self.tts_buffer_ms > 1000:
            warnings.append(
                f"TTS_BUFFER_MS={self.tts_buffer_ms:.0f} delays barge-in by up to a second."
            )

        if self.native_turn_detection and self.barge_in_enabled:
            log.info("Native turn detection enabled; energy detector runs as a no-op fallback")

        return warnings


settings = Settings()
