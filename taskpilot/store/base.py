"""
Persistence Store - Interface

Durable task snapshots and append-only memory facts, searchable by keyword.
Any engine satisfying this contract can back the agent.
"""

from abc import ABC, abstractmethod
import re
from typing import Optional

from taskpilot.agent.models import Task, Memory


def extract_keywords(query: str) -> list[str]:
    """Lower-cased search words longer than two characters, de-duplicated."""
    words = []
    for word in re.split(r'\s+', query.lower()):
        if len(word) > 2 and word not in words:
            words.append(word)
    return words


class TaskStore(ABC):
    """Persistence contract for tasks and memories."""

    @abstractmethod
    def save_task(self, task: Task) -> None:
        """Upsert a task snapshot by id. Re-saving an unchanged task is a no-op."""

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        """Load a task snapshot, or None."""

    @abstractmethod
    def get_user_tasks(self, user_id: str, limit: int = 20) -> list[Task]:
        """A user's tasks, newest first."""

    @abstractmethod
    def save_memory(
        self,
        user_id: str,
        memory_type: str,
        content: str,
        metadata: Optional[dict] = None,
        score: float = 0.7,
    ) -> int:
        """Append a memory and return its id."""

    @abstractmethod
    def search_memories(
        self,
        user_id: str,
        query: str,
        memory_type: Optional[str] = None,
        limit: int = 10,
    ) -> list[Memory]:
        """
        Case-insensitive keyword OR match over memory content.

        Ranked by score descending, then recency descending.
        """

    @abstractmethod
    def get_recent_memories(self, user_id: str, memory_type: str, limit: int = 10) -> list[Memory]:
        """Most recent memories of one type."""

    @abstractmethod
    def get_stats(self) -> dict:
        """Counts of stored tasks and memories."""

    def close(self) -> None:
        """Release engine resources."""
