"""
Tool Registry

Per-orchestrator catalog of tools with discovery and time-bounded dispatch.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional

from taskpilot import config
from taskpilot.logger import info, error, debug
from .base import Tool, ToolResult, ToolCategory


class ToolRegistry:
    """
    Catalog of agent tools.

    Provides:
    - Tool registration and discovery
    - Prompt descriptions and JSON schemas for the LLM
    - Dispatch raced against a fixed timeout
    - Category-based filtering
    """

    def __init__(self, timeout_ms: int = None, max_workers: int = 8):
        self._tools: dict[str, Tool] = {}
        self._by_category: dict[ToolCategory, list[str]] = {
            cat: [] for cat in ToolCategory
        }
        self.timeout_ms = timeout_ms if timeout_ms is not None else config.TOOL_TIMEOUT_MS
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tool")

    def register(self, tool: Tool) -> None:
        """Register a tool in the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")

        self._tools[tool.name] = tool
        self._by_category[tool.category].append(tool.name)

        debug(f"Registered tool: {tool.name}",
              category=tool.category.value,
              params=[p.name for p in tool.parameters])

    def unregister(self, name: str) -> None:
        """Remove a tool from the registry."""
        if name in self._tools:
            tool = self._tools[name]
            self._by_category[tool.category].remove(name)
            del self._tools[name]

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self, category: Optional[ToolCategory] = None) -> list[str]:
        """List all tool names, optionally filtered by category."""
        if category:
            return self._by_category[category].copy()
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def execute(self, name: str, args: dict = None) -> ToolResult:
        """
        Execute a tool by name.

        Never raises: unknown tools, invalid params, exceptions and timeouts
        all come back as a failed ToolResult. A timed-out tool keeps running
        on its worker thread until it returns on its own.
        """
        args = args or {}
        tool = self.get(name)
        if not tool:
            return ToolResult(
                success=False,
                error=f"Unknown tool: {name}. Available: {', '.join(self._tools)}",
            )

        info(f"Executing tool: {name}",
             category=tool.category.value,
             params=list(args.keys()))

        timeout_s = self.timeout_ms / 1000
        try:
            future = self._executor.submit(tool, **args)
            result = future.result(timeout=timeout_s)
        except FutureTimeout:
            error(f"Tool {name} timed out", timeout_ms=self.timeout_ms)
            return ToolResult(success=False, error=f"Tool {name} timed out after {timeout_s:g}s")
        except Exception as e:
            error(f"Tool {name} raised exception", err=e)
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        if not isinstance(result, ToolResult):
            result = ToolResult(success=True, data=result)

        if result.success:
            debug(f"Tool {name} succeeded",
                  side_effects=result.side_effects)
        else:
            error(f"Tool {name} failed",
                  error=result.error)

        return result

    def get_all_schemas(self) -> list[dict]:
        """Get JSON schemas for all registered tools."""
        return [tool.to_json_schema() for tool in self._tools.values()]

    def get_prompt_descriptions(self, category: Optional[ToolCategory] = None) -> str:
        """
        Generate tool descriptions suitable for system prompts.

        Groups tools by category for better LLM comprehension.
        """
        sections = []

        categories = [category] if category else list(ToolCategory)

        for cat in categories:
            tool_names = self._by_category[cat]
            if not tool_names:
                continue

            section = f"## {cat.value.upper()} TOOLS\n\n"
            for name in tool_names:
                tool = self._tools[name]
                section += tool.to_prompt_description() + "\n\n"

            sections.append(section)

        return "\n".join(sections)

    def shutdown(self) -> None:
        """Stop accepting work; running tools are not interrupted."""
        self._executor.shutdown(wait=False)
