"""Streaming chat completions against any OpenAI-compatible endpoint.

Works with Ollama (``/v1``), vLLM, Groq, OpenRouter and OpenAI itself.
Responses are read as server-sent events; tool-call fragments arrive
spread over many deltas and are stitched together by index.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from voice_agent.config import settings
from voice_agent.errors import ProviderError
from voice_agent.models.session import ConversationMessage, MessageRole
from voice_agent.models.tools import ToolCall, ToolDefinition
from voice_agent.providers.base import (
    CompleteEvent,
    LLMEvent,
    LLMProvider,
    TokenEvent,
    ToolCallEvent,
)

log = logging.getLogger("voice_agent.providers.openai_compat")


def format_messages(messages: list[ConversationMessage], system_prompt: str) -> list[dict[str, str]]:
    """Chat-completions message list: system prompt first, tool results as assistant turns."""
    formatted = [{"role": "system", "content": system_prompt}]
    for msg in messages:
        role = MessageRole.ASSISTANT if msg.role == MessageRole.TOOL else msg.role
        formatted.append({"role": role.value, "content": msg.content})
    return formatted


def parse_tool_arguments(raw: str, tool_name: str) -> dict[str, Any]:
    """Decode a tool call's JSON arguments; malformed input becomes ``{}``."""
    if not raw.strip():
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Malformed arguments for tool %s dropped: %.80r", tool_name, raw)
        return {}
    if not isinstance(args, dict):
        log.warning("Non-object arguments for tool %s dropped", tool_name)
        return {}
    return args


class OpenAICompatibleLLM(LLMProvider):
    """LLMProvider over httpx streaming POST /chat/completions."""

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model or settings.llm_model
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.api_key = settings.llm_api_key if api_key is None else api_key
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s or settings.llm_timeout_s)
        self.name = f"openai_compat:{self.model}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request_body(
        self,
        messages: list[ConversationMessage],
        system_prompt: str,
        tools: list[ToolDefinition] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": format_messages(messages, system_prompt),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            body["tools"] = [t.to_openai() for t in tools]
            body["tool_choice"] = "auto"
        return body

    async def generate_streaming(
        self,
        messages: list[ConversationMessage],
        system_prompt: str,
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[LLMEvent]:
        body = self._request_body(messages, system_prompt, tools)
        full_text: list[str] = []
        tool_buffer: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None

        log.debug("LLM request: model=%s messages=%d tools=%d",
                  self.model, len(body["messages"]), len(tools or []))

        try:
            async with self._client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self._headers(),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ProviderError(
                        self.name,
                        f"HTTP {response.status_code}: {response.text[:200]}",
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        log.debug("Skipping undecodable SSE line: %.80r", data)
                        continue

                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    choice = choices[0]
                    delta = choice.get("delta") or {}

                    content = delta.get("content")
                    if content:
                        full_text.append(content)
                        yield TokenEvent(text=content)

                    for tc in delta.get("tool_calls") or []:
                        idx = tc.get("index", 0)
                        entry = tool_buffer.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                        if tc.get("id"):
                            entry["id"] = tc["id"]
                        fn = tc.get("function") or {}
                        if fn.get("name"):
                            entry["name"] = fn["name"]
                        if fn.get("arguments"):
                            entry["arguments"] += fn["arguments"]

                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc

        tool_calls: list[ToolCall] = []
        for idx in sorted(tool_buffer):
            entry = tool_buffer[idx]
            if not entry["name"]:
                log.warning("Tool call #%d without a function name dropped", idx)
                continue
            call = ToolCall(
                id=entry["id"] or f"call_{idx}",
                name=entry["name"],
                arguments=parse_tool_arguments(entry["arguments"], entry["name"]),
            )
            tool_calls.append(call)
            yield ToolCallEvent(tool_call=call)

        yield CompleteEvent(
            full_text="".join(full_text),
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        )
