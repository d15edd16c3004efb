"""
Tests for Tool Registry

Registration, discovery, validation and time-bounded dispatch.
"""

import threading

import pytest

from taskpilot.agent.tools import (
    FunctionTool,
    ToolCategory,
    ToolParameter,
    ToolRegistry,
    ToolResult,
)


def make_tool(name="greet", func=None, category=ToolCategory.COMPUTE, parameters=None):
    return FunctionTool(
        name=name,
        description=f"The {name} tool.",
        category=category,
        func=func or (lambda who: f"hello {who}"),
        parameters=parameters if parameters is not None else [
            ToolParameter("who", "string", "Who to greet"),
        ],
    )


@pytest.fixture
def registry():
    registry = ToolRegistry(timeout_ms=100)
    yield registry
    registry.shutdown()


class TestRegistration:
    """Catalog management."""

    def test_register_and_get(self, registry):
        tool = make_tool()
        registry.register(tool)

        assert registry.get("greet") is tool
        assert registry.has("greet")
        assert len(registry) == 1

    def test_duplicate_rejected(self, registry):
        registry.register(make_tool())

        with pytest.raises(ValueError):
            registry.register(make_tool())

    def test_unregister(self, registry):
        registry.register(make_tool())
        registry.unregister("greet")

        assert not registry.has("greet")
        assert registry.list_tools(ToolCategory.COMPUTE) == []

    def test_list_by_category(self, registry):
        registry.register(make_tool("a", category=ToolCategory.COMPUTE))
        registry.register(make_tool("b", category=ToolCategory.SYSTEM))

        assert registry.list_tools() == ["a", "b"]
        assert registry.list_tools(ToolCategory.SYSTEM) == ["b"]

    def test_prompt_descriptions_grouped(self, registry):
        registry.register(make_tool("a", category=ToolCategory.COMPUTE))
        registry.register(make_tool("b", category=ToolCategory.MEMORY))

        text = registry.get_prompt_descriptions()

        assert "## COMPUTE TOOLS" in text
        assert "## MEMORY TOOLS" in text
        assert "## SYSTEM TOOLS" not in text
        assert "- who [string] (required): Who to greet" in text

    def test_json_schema(self, registry):
        registry.register(make_tool(parameters=[
            ToolParameter("who", "string", "Who"),
            ToolParameter("tone", "string", "Tone", required=False, enum=["warm", "cold"]),
        ]))

        schema = registry.get_all_schemas()[0]

        assert schema["name"] == "greet"
        assert schema["parameters"]["required"] == ["who"]
        assert schema["parameters"]["properties"]["tone"]["enum"] == ["warm", "cold"]


class TestExecution:
    """Dispatch never raises."""

    def test_success(self, registry):
        registry.register(make_tool())

        result = registry.execute("greet", {"who": "world"})

        assert result.success
        assert result.data == "hello world"

    def test_unknown_tool(self, registry):
        registry.register(make_tool())

        result = registry.execute("nope", {})

        assert not result.success
        assert result.error == "Unknown tool: nope. Available: greet"

    def test_missing_required_param(self, registry):
        registry.register(make_tool())

        result = registry.execute("greet", {})

        assert not result.success
        assert result.error == "Missing required parameter: who"

    def test_enum_checked(self, registry):
        registry.register(make_tool(
            func=lambda tone: tone,
            parameters=[ToolParameter("tone", "string", "Tone", enum=["warm", "cold"])],
        ))

        result = registry.execute("greet", {"tone": "hot"})

        assert not result.success
        assert "Invalid value for tone" in result.error

    def test_loose_types_accepted(self, registry):
        registry.register(make_tool(
            func=lambda n: int(n) * 2,
            parameters=[ToolParameter("n", "integer", "A number")],
        ))

        assert registry.execute("greet", {"n": "5"}).data == 10

    def test_exception_becomes_failure(self, registry):
        def explode(who):
            raise KeyError("boom")

        registry.register(make_tool(func=explode))

        result = registry.execute("greet", {"who": "x"})

        assert not result.success
        assert "boom" in result.error

    def test_unexpected_argument_becomes_failure(self, registry):
        registry.register(make_tool())

        result = registry.execute("greet", {"who": "x", "extra": 1})

        assert not result.success

    def test_tool_result_passed_through(self, registry):
        registry.register(make_tool(func=lambda who: ToolResult(success=False, error="nope")))

        result = registry.execute("greet", {"who": "x"})

        assert not result.success
        assert result.error == "nope"

    def test_timeout(self, registry):
        release = threading.Event()
        registry.register(make_tool("slow", func=lambda: release.wait(5), parameters=[]))

        try:
            result = registry.execute("slow", {})
        finally:
            release.set()

        assert not result.success
        assert result.error == "Tool slow timed out after 0.1s"
