"""
Anthropic provider.

The Messages API takes the system prompt as a separate parameter, so the
system message is lifted out of the conversation before sending.
"""

from typing import Optional
from anthropic import Anthropic, AnthropicError

from taskpilot.errors import ProviderError

from .base import LLMProvider, LLMMessage, LLMResponse, ChatOptions


class AnthropicProvider(LLMProvider):
    """Chat provider backed by the anthropic SDK."""

    name = 'anthropic'

    def __init__(
        self,
        api_key: str,
        model: str = 'claude-sonnet-4-20250514',
        timeout: float = 120,
        client: Anthropic = None,
    ):
        self.model = model
        self.client = client or Anthropic(api_key=api_key, timeout=timeout)

    def chat(self, messages: list[LLMMessage], options: Optional[ChatOptions] = None) -> LLMResponse:
        options = options or ChatOptions()

        system = '\n\n'.join(m.content for m in messages if m.role == 'system')
        request = {
            'model': self.model,
            'max_tokens': options.max_tokens or 4096,
            'messages': [m.to_dict() for m in messages if m.role != 'system'],
        }
        if system:
            request['system'] = system
        if options.temperature is not None:
            request['temperature'] = options.temperature

        try:
            response = self.client.messages.create(**request)
        except AnthropicError as e:
            raise ProviderError(f'Anthropic API error: {str(e)[:300]}',
                                provider=self.name,
                                status_code=getattr(e, 'status_code', None)) from e

        text = ''.join(
            block.text for block in response.content
            if getattr(block, 'type', None) == 'text'
        )

        return LLMResponse(
            content=text.strip(),
            model=response.model or self.model,
            input_tokens=response.usage.input_tokens if response.usage else None,
            output_tokens=response.usage.output_tokens if response.usage else None,
            finish_reason=response.stop_reason,
        )
