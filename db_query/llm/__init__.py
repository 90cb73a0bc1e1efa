"""LLM module exports."""

from .client import (
    LLMClient,
    LLMResponse,
    GroqClient,
    OpenAIClient,
    create_llm_client
)

__all__ = [
    "LLMClient",
    "LLMResponse",
    "GroqClient",
    "OpenAIClient",
    "create_llm_client"
]
