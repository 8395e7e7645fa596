from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, List, Optional, Protocol

from anthropic import AsyncAnthropic

from ..config import AppConfig

LOG = logging.getLogger("impulz.llm")


class LLMConfigurationError(RuntimeError):
    pass


class ChatLLM(Protocol):
    def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]: ...


class AnthropicChatClient:
    """Streams text deltas from the Anthropic Messages API. No retries."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 4096) -> None:
        self._client = AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens

    async def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        LOG.info("llm_stream_open", extra={"model": self.model, "messages": len(messages), "system_chars": len(system)})
        chunks = 0
        async with self._client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=messages,
        ) as stream:
            async for text in stream.text_stream:
                chunks += 1
                yield text
        LOG.info("llm_stream_done", extra={"model": self.model, "chunks": chunks})


_client: Optional[AnthropicChatClient] = None


def get_llm_client() -> ChatLLM:
    """FastAPI dependency. Raises LLMConfigurationError when ANTHROPIC_API_KEY is unset."""
    global _client
    if _client is not None:
        return _client
    cfg = AppConfig.from_env()
    if not cfg.anthropic_api_key:
        raise LLMConfigurationError("Missing ANTHROPIC_API_KEY")
    _client = AnthropicChatClient(cfg.anthropic_api_key, cfg.llm_model, cfg.llm_max_tokens)
    return _client
