"""
LLM Client - Unified async interface for OpenAI-compatible and Groq models.

OpenAI is the default provider; LLM_API_URL points it at any
OpenAI-compatible chat-completions endpoint.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(self, messages: List[Dict[str, str]]) -> LLMResponse:
        pass


def _to_response(response) -> LLMResponse:
    usage = response.usage
    content = response.choices[0].message.content if response.choices else ""
    return LLMResponse(
        content=content or "",
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
        total_tokens=usage.total_tokens if usage else 0
    )


class OpenAIClient(LLMClient):
    """OpenAI API client (or any OpenAI-compatible endpoint)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        base_url: Optional[str] = None,
        timeout: float = 60.0
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.base_url = base_url
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0
            )
        return self._client

    async def chat(self, messages: List[Dict[str, str]]) -> LLMResponse:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens
        )
        return _to_response(response)


class GroqClient(LLMClient):
    """
    Groq API client - FREE and FAST inference.

    Available models:
    - llama-3.3-70b-versatile (recommended)
    - llama-3.1-8b-instant (faster)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 60.0
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from groq import AsyncGroq
            self._client = AsyncGroq(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def chat(self, messages: List[Dict[str, str]]) -> LLMResponse:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens
        )
        return _to_response(response)


def create_llm_client(provider: str = "openai", **kwargs) -> LLMClient:
    """
    Factory function to create LLM client.

    Args:
        provider: "openai" (default) or "groq"
        **kwargs: Provider-specific arguments

    Returns:
        Configured LLMClient instance
    """
    if provider == "openai":
        return OpenAIClient(**kwargs)
    elif provider == "groq":
        kwargs.pop("base_url", None)
        return GroqClient(**kwargs)
    else:
        raise ValueError(f"Unknown provider: {provider}. Use 'openai' or 'groq'")
