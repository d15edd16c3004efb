"""
Ollama provider (local models over raw HTTP).
"""

from typing import Optional
import requests

from taskpilot.errors import ProviderError

from .base import LLMProvider, LLMMessage, LLMResponse, ChatOptions


class OllamaProvider(LLMProvider):
    """Chat provider for a local Ollama server."""

    name = 'ollama'

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: str = 'llama3',
        timeout: float = 120,
        session: requests.Session = None,
    ):
        self.base_url = (base_url or 'http://localhost:11434').rstrip('/')
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def chat(self, messages: list[LLMMessage], options: Optional[ChatOptions] = None) -> LLMResponse:
        options = options or ChatOptions()

        body = {
            'model': self.model,
            'messages': [m.to_dict() for m in messages],
            'stream': False,
            'options': {},
        }
        if options.temperature is not None:
            body['options']['temperature'] = options.temperature
        if options.max_tokens:
            body['options']['num_predict'] = options.max_tokens
        if options.json_mode:
            body['format'] = 'json'

        try:
            response = self.session.post(
                f'{self.base_url}/api/chat',
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f'Ollama request failed: {e}', provider=self.name) from e

        if not response.ok:
            raise ProviderError(
                f'Ollama {response.status_code}: {response.text[:300]}',
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError('Ollama returned invalid JSON', provider=self.name) from e

        return LLMResponse(
            content=(data.get('message') or {}).get('content', '').strip(),
            model=data.get('model') or self.model,
            input_tokens=data.get('prompt_eval_count'),
            output_tokens=data.get('eval_count'),
            finish_reason=data.get('done_reason'),
        )
