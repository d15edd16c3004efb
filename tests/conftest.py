"""
Pytest Configuration and Fixtures
"""

import threading

import pytest

from taskpilot.agent.metrics import AgentMetrics
from taskpilot.agent.orchestrator import AgentOrchestrator
from taskpilot.agent.tools import FunctionTool, ToolCategory, ToolParameter, ToolRegistry
from taskpilot.providers import LLMProvider, LLMResponse
from taskpilot.store import InMemoryTaskStore


class FakeProvider(LLMProvider):
    """
    Scripted provider.

    Each queued item is returned in order: a string becomes the response
    content, an exception is raised, and a callable is called with the
    messages and its return value used as content.
    """

    name = "fake"

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self._lock = threading.Lock()

    def queue(self, *responses):
        self.responses.extend(responses)

    def chat(self, messages, options=None):
        with self._lock:
            self.calls.append((list(messages), options))
            if not self.responses:
                raise AssertionError("FakeProvider ran out of scripted responses")
            item = self.responses.pop(0)

        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(messages)
        return LLMResponse(content=item, model="fake-model", input_tokens=10, output_tokens=5,
                           finish_reason="stop")

    def system_prompts(self):
        return [messages[0].content for messages, _ in self.calls]


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(InMemoryTaskStore):
    """In-memory store that remembers the status of every task snapshot."""

    def __init__(self):
        super().__init__()
        self.saved_statuses = []

    def save_task(self, task):
        self.saved_statuses.append(task.status.value)
        super().save_task(task)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def sleeps() -> list:
    """Durations passed to the orchestrator's sleep function."""
    return []


@pytest.fixture
def registry():
    """Registry with deterministic local tools."""
    registry = ToolRegistry(timeout_ms=2000)

    registry.register(FunctionTool(
        name="echo",
        description="Return the given text.",
        category=ToolCategory.COMPUTE,
        func=lambda text="": text,
        parameters=[ToolParameter("text", "string", "Text to return", required=False)],
    ))

    registry.register(FunctionTool(
        name="get_weather",
        description="Weather for a location.",
        category=ToolCategory.RESEARCH,
        func=lambda location: {"location": location, "temp_c": "18", "conditions": "Sunny"},
        parameters=[ToolParameter("location", "string", "City")],
    ))

    def broken(**kwargs):
        raise RuntimeError("service unavailable")

    registry.register(FunctionTool(
        name="broken",
        description="Always fails.",
        category=ToolCategory.RESEARCH,
        func=broken,
        parameters=[],
    ))

    registry.register(FunctionTool(
        name="whoami",
        description="Return the calling user.",
        category=ToolCategory.MEMORY,
        func=lambda user_id="default": user_id,
        parameters=[ToolParameter("user_id", "string", "Caller", required=False)],
    ))

    yield registry
    registry.shutdown()


@pytest.fixture
def make_orchestrator(provider, registry, store, clock, sleeps):
    """Factory for orchestrators wired to the fakes, with overridable limits."""
    created = []

    def factory(**kwargs):
        options = {
            "max_steps": 15,
            "max_retries": 2,
            "max_replans": 3,
            "task_timeout_ms": 60_000,
            "retry_base_delay_ms": 1000,
            "max_concurrent_tasks": 2,
            "clock": clock,
            "sleep": sleeps.append,
            "metrics": AgentMetrics(),
        }
        options.update(kwargs)
        orchestrator = AgentOrchestrator(provider, registry, store, **options)
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        orchestrator.shutdown(wait=True)
