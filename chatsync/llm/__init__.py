"""LLM module - provides unified interface for completion providers."""

from .base import LLMProvider, LLMMessage, LLMResponse
from .openai_provider import OpenAIProvider
from .gemini_provider import GeminiProxyProvider
from .factory import create_llm_provider

__all__ = [
    'LLMProvider',
    'LLMMessage',
    'LLMResponse',
    'OpenAIProvider',
    'GeminiProxyProvider',
    'create_llm_provider',
]
