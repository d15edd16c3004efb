"""
Tool Base Class

Defines the standard interface for all agent tools.
Each tool is a callable with a parameter schema that plans can reference.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class ToolCategory(Enum):
    """Categories of tools available to the agent."""
    RESEARCH = "research"    # Web, feeds, HTTP
    COMPUTE = "compute"      # Scripts, math, time
    SYSTEM = "system"        # Files, shell, git
    MEMORY = "memory"        # Persistence store


@dataclass
class ToolParameter:
    """Definition of a tool parameter for JSON schema generation."""
    name: str
    type: str  # "string", "integer", "number", "boolean", "object", "array"
    description: str
    required: bool = True
    default: Any = None
    enum: Optional[list] = None
    items: Optional[dict] = None  # For array types

    def to_json_schema(self) -> dict:
        """Convert to JSON schema format."""
        schema = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = self.enum
        if self.default is not None:
            schema["default"] = self.default
        if self.items:
            schema["items"] = self.items
        return schema


@dataclass
class ToolResult:
    """Result of executing a tool."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    side_effects: list = field(default_factory=list)


class Tool(ABC):
    """
    Base class for all agent tools.

    Tools never raise for expected failures; they return a failed ToolResult.
    """

    def __init__(
        self,
        name: str,
        description: str,
        category: ToolCategory,
        parameters: list[ToolParameter] = None,
    ):
        self.name = name
        self.description = description
        self.category = category
        self.parameters = parameters or []

    @abstractmethod
    def execute(self, **kwargs) -> ToolResult:
        """
        Execute the tool with the given parameters.

        Must be implemented by each concrete tool.
        """
        pass

    def accepts(self, name: str) -> bool:
        """Whether the tool declares a parameter with this name."""
        return any(p.name == name for p in self.parameters)

    def validate_params(self, **kwargs) -> tuple[bool, Optional[str]]:
        """Validate parameters before execution."""
        for param in self.parameters:
            if param.required and param.name not in kwargs:
                return False, f"Missing required parameter: {param.name}"

            if param.name not in kwargs:
                continue

            if param.enum and kwargs[param.name] not in param.enum:
                return False, f"Invalid value for {param.name}. Must be one of: {param.enum}"

        return True, None

    def __call__(self, **kwargs) -> ToolResult:
        """Make tools callable directly."""
        valid, error = self.validate_params(**kwargs)
        if not valid:
            return ToolResult(success=False, error=error)
        return self.execute(**kwargs)

    def to_json_schema(self) -> dict:
        """
        Generate JSON schema for LLM tool calling.

        Format compatible with Claude/OpenAI function calling.
        """
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)

        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            }
        }

    def to_prompt_description(self) -> str:
        """Generate a description suitable for system prompts."""
        params_desc = []
        for p in self.parameters:
            req = "(required)" if p.required else "(optional)"
            params_desc.append(f"  - {p.name} [{p.type}] {req}: {p.description}")

        params_str = "\n".join(params_desc) if params_desc else "  (no parameters)"

        return f"""**{self.name}** [{self.category.value}]
{self.description}
Parameters:
{params_str}"""


class FunctionTool(Tool):
    """
    Tool that wraps an existing function.

    The function's return value becomes ToolResult.data; a ToolResult is
    passed through unchanged and an exception becomes a failed result.
    """

    def __init__(
        self,
        name: str,
        description: str,
        category: ToolCategory,
        func: Callable,
        parameters: list[ToolParameter] = None,
    ):
        super().__init__(name, description, category, parameters)
        self._func = func

    def execute(self, **kwargs) -> ToolResult:
        """Execute the wrapped function."""
        try:
            result = self._func(**kwargs)
        except Exception as e:
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, data=result)
