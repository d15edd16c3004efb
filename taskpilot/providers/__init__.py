"""
Language model providers.

A uniform chat interface over one or more backends with automatic fallback.
"""

from .base import LLMProvider, LLMMessage, LLMResponse, ChatOptions
from .fallback import FallbackProvider
from .factory import create_provider_from_env

__all__ = [
    'LLMProvider',
    'LLMMessage',
    'LLMResponse',
    'ChatOptions',
    'FallbackProvider',
    'create_provider_from_env',
]
