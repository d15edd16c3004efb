"""
In-process store for development and tests.

Snapshots are stored as serialized dicts so callers never share mutable
state with the store.
"""

import copy
import itertools
import threading
from typing import Optional

from taskpilot.agent.models import Task, Memory, now_ms

from .base import TaskStore, extract_keywords


class InMemoryTaskStore(TaskStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self):
        self._tasks: dict[str, dict] = {}
        self._memories: list[Memory] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def save_task(self, task: Task) -> None:
        snapshot = copy.deepcopy(task.to_dict())
        with self._lock:
            self._tasks[task.id] = snapshot

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            data = self._tasks.get(task_id)
            data = copy.deepcopy(data) if data else None
        return Task.from_dict(data) if data else None

    def get_raw_task(self, task_id: str) -> Optional[dict]:
        """Stored record as-is, for inspection."""
        with self._lock:
            data = self._tasks.get(task_id)
            return copy.deepcopy(data) if data else None

    def get_user_tasks(self, user_id: str, limit: int = 20) -> list[Task]:
        with self._lock:
            rows = [copy.deepcopy(t) for t in self._tasks.values() if t["user_id"] == user_id]
        rows.sort(key=lambda t: t["started_at"], reverse=True)
        return [Task.from_dict(t) for t in rows[:limit]]

    def save_memory(
        self,
        user_id: str,
        memory_type: str,
        content: str,
        metadata: Optional[dict] = None,
        score: float = 0.7,
    ) -> int:
        with self._lock:
            memory = Memory(
                id=next(self._ids),
                user_id=user_id,
                type=memory_type,
                content=content,
                metadata=dict(metadata or {}),
                score=score,
                created_at=now_ms(),
            )
            self._memories.append(memory)
            return memory.id

    def search_memories(
        self,
        user_id: str,
        query: str,
        memory_type: Optional[str] = None,
        limit: int = 10,
    ) -> list[Memory]:
        words = extract_keywords(query)
        if not words:
            return []

        with self._lock:
            matches = [
                m for m in self._memories
                if m.user_id == user_id
                and (memory_type is None or m.type == memory_type)
                and any(w in m.content.lower() for w in words)
            ]

        matches.sort(key=lambda m: (m.score, m.created_at, m.id), reverse=True)
        return [copy.deepcopy(m) for m in matches[:limit]]

    def get_recent_memories(self, user_id: str, memory_type: str, limit: int = 10) -> list[Memory]:
        with self._lock:
            matches = [
                m for m in self._memories
                if m.user_id == user_id and m.type == memory_type
            ]
        matches.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return [copy.deepcopy(m) for m in matches[:limit]]

    def get_stats(self) -> dict:
        with self._lock:
            return {"tasks": len(self._tasks), "memories": len(self._memories)}
