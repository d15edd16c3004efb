"""
Agent Tools Package

Tools the agent can reference from a plan, grouped by category:

- Research: web search, browsing, HTTP, weather, feeds
- Compute: sandboxed scripts, arithmetic, clock
- System: workspace files, shell, git
- Memory: store and recall facts
"""

from taskpilot import config
from .base import Tool, ToolResult, ToolCategory, ToolParameter, FunctionTool
from .registry import ToolRegistry
from .web import BrowserDriver, register_web_tools
from .compute import register_compute_tools
from .system import register_system_tools
from .memory import register_memory_tools


def create_default_registry(store, guard=None, driver: BrowserDriver = None,
                            workspace=None, timeout_ms: int = None, session=None) -> ToolRegistry:
    """Build a registry holding every built-in tool."""
    registry = ToolRegistry(timeout_ms=timeout_ms)
    register_web_tools(registry, guard=guard, driver=driver, session=session)
    register_compute_tools(registry)
    register_system_tools(registry, workspace or config.WORKSPACE_DIR)
    register_memory_tools(registry, store)
    return registry


__all__ = [
    'Tool',
    'ToolResult',
    'ToolCategory',
    'ToolParameter',
    'FunctionTool',
    'ToolRegistry',
    'BrowserDriver',
    'create_default_registry',
]
