"""Build the configured LLM client from settings."""

from __future__ import annotations

import logging

from ..domain.ports import LLMClient
from ..settings import AgentSettings, SettingsError
from .anthropic import AnthropicClient
from .base import LLMProviderConfig
from .ollama import OllamaClient
from .openai import OpenAIClient

logger = logging.getLogger(__name__)


def create_llm_client(settings: AgentSettings) -> LLMClient:
    """Create the LLM client selected by LLM_PROVIDER.

    Raises:
        SettingsError: If the provider's API key is missing
    """
    provider = settings.llm_provider

    if provider == "anthropic":
        if not settings.anthropic_api_key:
            raise SettingsError("ANTHROPIC_API_KEY environment variable is required")
        config = LLMProviderConfig(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout=settings.llm_timeout,
            max_tokens=settings.llm_max_tokens,
        )
        client: LLMClient = AnthropicClient(config)

    elif provider == "openai":
        if not settings.openai_api_key:
            raise SettingsError("OPENAI_API_KEY environment variable is required")
        config = LLMProviderConfig(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout,
            max_tokens=settings.llm_max_tokens,
        )
        client = OpenAIClient(config)

    elif provider == "ollama":
        config = LLMProviderConfig(
            api_key="not-needed",
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            timeout=settings.llm_timeout,
            max_tokens=settings.llm_max_tokens,
        )
        client = OllamaClient(config)

    else:
        raise SettingsError(f"Unknown LLM provider: {provider}")

    logger.info(f"LLM provider: {provider} ({config.model})")
    return client
