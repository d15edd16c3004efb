"""
Memory tools backed by the persistence store.
"""

from taskpilot.agent.models import MEMORY_TYPES
from .base import FunctionTool, ToolCategory, ToolParameter, ToolResult


def register_memory_tools(registry, store) -> None:
    def store_memory(content: str, type: str = "fact", user_id: str = "default") -> ToolResult:
        memory_id = store.save_memory(user_id, type, content)
        return ToolResult(
            success=True,
            data={"id": memory_id, "stored": content},
            side_effects=[f"memory {memory_id}"],
        )

    def recall_memory(query: str, user_id: str = "default", limit: int = 5) -> ToolResult:
        memories = store.search_memories(user_id, query, limit=int(limit))
        return ToolResult(success=True, data=[
            {"content": m.content, "type": m.type, "score": m.score}
            for m in memories
        ])

    def schedule_task(description: str, schedule: str, user_id: str = "default") -> ToolResult:
        # Recorded only; nothing consumes these yet.
        content = f"Scheduled intent: {description} ({schedule})"
        memory_id = store.save_memory(
            user_id, "fact", content,
            metadata={"kind": "schedule", "description": description, "schedule": schedule},
        )
        return ToolResult(success=True, data={
            "id": memory_id,
            "scheduled": False,
            "note": "Intent recorded in memory; no scheduler is attached.",
        })

    registry.register(FunctionTool(
        name="store_memory",
        description="Save information to persistent memory for later recall.",
        category=ToolCategory.MEMORY,
        func=store_memory,
        parameters=[
            ToolParameter("content", "string", "What to remember"),
            ToolParameter("type", "string", "Memory type", required=False, default="fact",
                          enum=list(MEMORY_TYPES)),
            ToolParameter("user_id", "string", "Owner of the memory", required=False),
        ],
    ))

    registry.register(FunctionTool(
        name="recall_memory",
        description="Search persistent memory for previously stored information.",
        category=ToolCategory.MEMORY,
        func=recall_memory,
        parameters=[
            ToolParameter("query", "string", "What to search for"),
            ToolParameter("user_id", "string", "Owner of the memories", required=False),
            ToolParameter("limit", "integer", "Max results (default 5)", required=False, default=5),
        ],
    ))

    registry.register(FunctionTool(
        name="schedule_task",
        description="Record an intent to run a task on a schedule (e.g. 'every morning at 8').",
        category=ToolCategory.MEMORY,
        func=schedule_task,
        parameters=[
            ToolParameter("description", "string", "What should be done"),
            ToolParameter("schedule", "string", "When, in plain words or cron syntax"),
            ToolParameter("user_id", "string", "Owner of the schedule", required=False),
        ],
    ))
