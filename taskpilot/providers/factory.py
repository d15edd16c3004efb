"""
Provider Factory

Builds the active language-model backends from configuration and wraps them
in a fallback chain ordered by LLM_PROVIDER_ORDER.
"""

from typing import Callable

from taskpilot import config, logger
from taskpilot.errors import ConfigurationError

from .base import LLMProvider
from .anthropic_provider import AnthropicProvider
from .fallback import FallbackProvider
from .ollama import OllamaProvider
from .openai_compatible import OpenAICompatibleProvider


def _build_anthropic() -> LLMProvider:
    return AnthropicProvider(
        api_key=config.ANTHROPIC_API_KEY,
        model=config.ANTHROPIC_MODEL,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_openai() -> LLMProvider:
    return OpenAICompatibleProvider(
        api_key=config.OPENAI_API_KEY,
        base_url=config.OPENAI_BASE_URL,
        model=config.OPENAI_MODEL,
        name='openai',
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_xai() -> LLMProvider:
    return OpenAICompatibleProvider(
        api_key=config.XAI_API_KEY,
        base_url=config.XAI_BASE_URL,
        model=config.XAI_MODEL,
        name='xai',
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_deepseek() -> LLMProvider:
    return OpenAICompatibleProvider(
        api_key=config.DEEPSEEK_API_KEY,
        base_url=config.DEEPSEEK_BASE_URL,
        model=config.DEEPSEEK_MODEL,
        name='deepseek',
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_ollama() -> LLMProvider:
    return OllamaProvider(
        base_url=config.OLLAMA_HOST,
        model=config.OLLAMA_MODEL or 'llama3',
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_custom() -> LLMProvider:
    return OpenAICompatibleProvider(
        api_key=config.LLM_API_KEY,
        base_url=config.LLM_BASE_URL,
        model=config.LLM_MODEL,
        name='custom',
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


# Registry of available backends: name -> (is_configured, builder)
BACKENDS: dict[str, tuple[Callable[[], bool], Callable[[], LLMProvider]]] = {
    'anthropic': (lambda: bool(config.ANTHROPIC_API_KEY), _build_anthropic),
    'openai': (lambda: bool(config.OPENAI_API_KEY), _build_openai),
    'xai': (lambda: bool(config.XAI_API_KEY), _build_xai),
    'deepseek': (lambda: bool(config.DEEPSEEK_API_KEY), _build_deepseek),
    'ollama': (lambda: bool(config.OLLAMA_HOST or config.OLLAMA_MODEL), _build_ollama),
    'custom': (lambda: bool(config.LLM_API_KEY and config.LLM_BASE_URL), _build_custom),
}


def configured_backends() -> list[str]:
    """Names of configured backends in priority order."""
    order = list(config.LLM_PROVIDER_ORDER)
    # Backends missing from the order list still count, after the listed ones
    order += [name for name in BACKENDS if name not in order]

    return [
        name for name in order
        if name in BACKENDS and BACKENDS[name][0]()
    ]


def create_provider_from_env() -> LLMProvider:
    """
    Build a provider from the environment.

    Returns the single backend directly, or a FallbackProvider when more than
    one is configured.

    Raises:
        ConfigurationError: If no backend is configured
    """
    names = configured_backends()

    if not names:
        raise ConfigurationError(
            'No LLM provider configured. Set one of: ANTHROPIC_API_KEY, '
            'OPENAI_API_KEY, XAI_API_KEY, DEEPSEEK_API_KEY, OLLAMA_MODEL, '
            'or LLM_API_KEY + LLM_BASE_URL'
        )

    providers = [BACKENDS[name][1]() for name in names]

    logger.info('Language model providers configured',
                providers=names,
                fallback=len(providers) > 1)

    if len(providers) == 1:
        return providers[0]
    return FallbackProvider(providers)
