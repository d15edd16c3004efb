"""
Learning extraction: turns finished tasks into memories for future planning.
"""

import re

from taskpilot import logger
from .models import Task, TaskStatus


SUCCESS_SCORE = 0.8
FAILURE_SCORE = 0.6
OUTCOME_SCORE = 0.7

# First match wins
CATEGORY_KEYWORDS = [
    ("weather", ("weather", "forecast", "temperature")),
    ("math", ("calculate", "compute", "solve", "math", "equation")),
    ("file-ops", ("file", "folder", "directory", "read_file", "write_file")),
    ("search", ("search", "find", "look up", "lookup", "google")),
    ("creation", ("create", "build", "write", "generate", "make")),
    ("monitoring", ("monitor", "watch", "track")),
    ("analysis", ("analyze", "analyse", "summarize", "summarise", "compare", "review")),
    ("coding", ("code", "program", "script", "debug", "git")),
]


def categorize(goal: str) -> str:
    """Coarse goal category used to group learnings."""
    lowered = goal.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}", lowered) for keyword in keywords):
            return category
    return "general"


def learn_from_task(store, task: Task) -> None:
    """
    Record what worked or failed for a finished task.

    Never raises; storage problems are logged and dropped.
    """
    try:
        _learn(store, task)
    except Exception as e:
        logger.error('Failed to record task learnings', err=e, task_id=task.id)


def _learn(store, task: Task) -> None:
    category = categorize(task.goal)

    if task.status == TaskStatus.COMPLETED:
        chain = " -> ".join(s.tool for s in task.successful_steps() if s.tool)
        if chain:
            store.save_memory(
                task.user_id, "learning",
                f'For "{category}" goals, this tool chain works: {chain}',
                metadata={"goal": task.goal, "status": task.status.value, "category": category},
                score=SUCCESS_SCORE,
            )
    else:
        failures = "; ".join(f"{s.tool or 'reasoning'}: {s.error}" for s in task.failed_steps())
        store.save_memory(
            task.user_id, "learning",
            f'"{category}" tasks can fail: {failures or task.error or "unknown error"}',
            metadata={"goal": task.goal, "status": task.status.value, "category": category},
            score=FAILURE_SCORE,
        )

    verb = "Completed" if task.status == TaskStatus.COMPLETED else "Failed"
    outcome = (task.result or task.error or "")[:200]
    store.save_memory(
        task.user_id, "task",
        f"{verb}: {task.goal} -> {outcome}",
        metadata={"task_id": task.id, "status": task.status.value},
        score=OUTCOME_SCORE,
    )


def relevant_context(store, user_id: str, goal: str) -> str:
    """Learnings matching the goal plus recent task outcomes, as prompt text."""
    try:
        learnings = store.search_memories(user_id, goal, memory_type="learning", limit=3)
        recent = store.get_recent_memories(user_id, "task", limit=3)
    except Exception as e:
        logger.warn('Memory lookup failed', error=str(e))
        return ""

    parts = []
    if learnings:
        parts.append("Learnings: " + "; ".join(m.content for m in learnings))
    if recent:
        parts.append("Recent tasks: " + "; ".join(m.content for m in recent))
    return "\n".join(parts)
