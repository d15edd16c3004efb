"""
OpenAI-compatible provider.

Works with OpenAI, xAI, DeepSeek and any endpoint speaking the
chat.completions API.
"""

from typing import Optional
from openai import OpenAI, OpenAIError

from taskpilot.errors import ProviderError
from taskpilot import logger

from .base import LLMProvider, LLMMessage, LLMResponse, ChatOptions


class OpenAICompatibleProvider(LLMProvider):
    """Chat provider backed by the openai SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = 'gpt-4o',
        base_url: Optional[str] = None,
        name: str = 'openai',
        timeout: float = 120,
        client: OpenAI = None,
    ):
        self.name = name
        self.model = model
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=(base_url or 'https://api.openai.com/v1').rstrip('/'),
            timeout=timeout,
        )

    def chat(self, messages: list[LLMMessage], options: Optional[ChatOptions] = None) -> LLMResponse:
        options = options or ChatOptions()

        request = {
            'model': self.model,
            'messages': [m.to_dict() for m in messages],
            'temperature': 0.7 if options.temperature is None else options.temperature,
        }
        if options.max_tokens:
            request['max_tokens'] = options.max_tokens
        if options.json_mode:
            request['response_format'] = {'type': 'json_object'}

        try:
            response = self.client.chat.completions.create(**request)
        except OpenAIError as e:
            status = getattr(e, 'status_code', None)
            logger.debug(f'{self.name} chat failed', status_code=status)
            raise ProviderError(f'{self.name} API error: {str(e)[:300]}',
                                provider=self.name, status_code=status) from e

        if not response.choices:
            raise ProviderError(f'{self.name} returned no choices', provider=self.name)

        choice = response.choices[0]
        usage = getattr(response, 'usage', None)

        return LLMResponse(
            content=(choice.message.content or '').strip(),
            model=getattr(response, 'model', None) or self.model,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            finish_reason=choice.finish_reason,
        )
