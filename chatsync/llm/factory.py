"""
LLM Provider Factory - Creates the configured LLM provider instance.
"""

from typing import Optional
from .base import LLMProvider
from .openai_provider import OpenAIProvider
from .gemini_provider import GeminiProxyProvider


def create_llm_provider(
    provider: str = "openai",
    api_key: Optional[str] = "",
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    **kwargs
) -> Optional[LLMProvider]:
    """
    Create an LLM provider instance based on configuration.

    Args:
        provider: Provider name ("openai" or "gemini_proxy")
        api_key: API key for the provider; the Gemini proxy authenticates with
            the chat API token instead and may run without one
        model: Model name (uses provider default if not specified)
        base_url: Custom base URL (uses provider default if not specified)
        **kwargs: Additional provider-specific parameters

    Returns:
        LLMProvider instance, or None if the provider cannot be configured
    """
    params = {"api_key": api_key or ""}
    if model:
        params["model"] = model
    if base_url:
        params["base_url"] = base_url
    params.update(kwargs)

    if provider == "openai":
        if not api_key:
            return None
        return OpenAIProvider(**params)

    elif provider == "gemini_proxy":
        return GeminiProxyProvider(**params)

    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
