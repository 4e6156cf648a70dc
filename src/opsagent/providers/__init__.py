"""LLM provider implementations."""

from .anthropic import AnthropicClient
from .base import LLMProviderConfig, LLMProviderError
from .factory import create_llm_client
from .ollama import OllamaClient
from .openai import OpenAIClient

__all__ = [
    "AnthropicClient",
    "LLMProviderConfig",
    "LLMProviderError",
    "OllamaClient",
    "OpenAIClient",
    "create_llm_client",
]
