"""
Language Model Provider - Interface

Defines the contract that every language-model backend must implement so the
orchestrator never depends on a single vendor's wire format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class LLMMessage:
    """A single chat message."""
    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatOptions:
    """Per-call generation options."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = False


@dataclass
class LLMResponse:
    """Standard response format from language-model backends."""
    content: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    finish_reason: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return (self.input_tokens or 0) + (self.output_tokens or 0)


class LLMProvider(ABC):
    """
    Abstract base class (interface) for language-model backends.

    Implementations raise ProviderError on network, auth or response failures.
    """

    name: str = "provider"

    @abstractmethod
    def chat(self, messages: list[LLMMessage], options: Optional[ChatOptions] = None) -> LLMResponse:
        """
        Send an ordered list of messages and return the model's reply.

        Args:
            messages: Conversation, system message first if present
            options: Temperature, token limit and JSON mode

        Returns:
            LLMResponse with content, token counts, model id and finish reason
        """
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
