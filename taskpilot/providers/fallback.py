"""
Fallback composition over several providers.
"""

from typing import Optional

from taskpilot.errors import ProviderError
from taskpilot import logger

from .base import LLMProvider, LLMMessage, LLMResponse, ChatOptions


class FallbackProvider(LLMProvider):
    """
    Tries each provider in priority order.

    The first response with non-empty content wins. When every backend fails,
    the last error is raised.
    """

    def __init__(self, providers: list[LLMProvider]):
        if not providers:
            raise ValueError('FallbackProvider needs at least one provider')
        self.providers = list(providers)
        self.name = '+'.join(p.name for p in self.providers)

    def chat(self, messages: list[LLMMessage], options: Optional[ChatOptions] = None) -> LLMResponse:
        last_error: Optional[Exception] = None

        for provider in self.providers:
            try:
                response = provider.chat(messages, options)
            except Exception as e:
                logger.warn(f'{provider.name} failed, trying next provider',
                            provider=provider.name,
                            error=str(e)[:200])
                last_error = e
                continue

            if response.content:
                return response

            logger.warn(f'{provider.name} returned empty content, trying next provider',
                        provider=provider.name)

        if last_error:
            raise last_error
        raise ProviderError('All LLM providers returned empty content', provider=self.name)
