"""
PostgreSQL store.

Tasks are upserted whole (plan and observations as JSONB); memories are
append-only rows searched with LIKE over lower-cased content.
"""

from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from taskpilot import logger
from taskpilot.agent.models import Task, Memory, now_ms

from .base import TaskStore, extract_keywords


SCHEMA = """
    CREATE TABLE IF NOT EXISTS agent_tasks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        goal TEXT NOT NULL,
        context TEXT DEFAULT '',
        status TEXT NOT NULL DEFAULT 'pending',
        plan JSONB NOT NULL DEFAULT '[]',
        observations JSONB NOT NULL DEFAULT '[]',
        current_step INTEGER NOT NULL DEFAULT 0,
        replans INTEGER NOT NULL DEFAULT 0,
        result TEXT,
        error TEXT,
        tokens_used INTEGER NOT NULL DEFAULT 0,
        started_at BIGINT NOT NULL,
        completed_at BIGINT
    );

    CREATE TABLE IF NOT EXISTS agent_memories (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        content TEXT NOT NULL,
        metadata JSONB NOT NULL DEFAULT '{}',
        score REAL NOT NULL DEFAULT 0.7,
        created_at BIGINT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_agent_memories_user ON agent_memories(user_id);
    CREATE INDEX IF NOT EXISTS idx_agent_memories_type ON agent_memories(user_id, type);
    CREATE INDEX IF NOT EXISTS idx_agent_tasks_user ON agent_tasks(user_id);
    CREATE INDEX IF NOT EXISTS idx_agent_tasks_status ON agent_tasks(status);
"""


class PostgresTaskStore(TaskStore):
    """TaskStore backed by a psycopg connection pool."""

    UPSERT_TASK = """
        INSERT INTO agent_tasks (
            id, user_id, goal, context, status, plan, observations,
            current_step, replans, result, error, tokens_used,
            started_at, completed_at
        ) VALUES (
            %(id)s, %(user_id)s, %(goal)s, %(context)s, %(status)s, %(plan)s,
            %(observations)s, %(current_step)s, %(replans)s, %(result)s,
            %(error)s, %(tokens_used)s, %(started_at)s, %(completed_at)s
        )
        ON CONFLICT (id) DO UPDATE SET
            user_id = EXCLUDED.user_id,
            goal = EXCLUDED.goal,
            context = EXCLUDED.context,
            status = EXCLUDED.status,
            plan = EXCLUDED.plan,
            observations = EXCLUDED.observations,
            current_step = EXCLUDED.current_step,
            replans = EXCLUDED.replans,
            result = EXCLUDED.result,
            error = EXCLUDED.error,
            tokens_used = EXCLUDED.tokens_used,
            started_at = EXCLUDED.started_at,
            completed_at = EXCLUDED.completed_at
    """

    LOAD_TASK = "SELECT * FROM agent_tasks WHERE id = %(id)s"

    USER_TASKS = """
        SELECT * FROM agent_tasks
        WHERE user_id = %(user_id)s
        ORDER BY started_at DESC
        LIMIT %(limit)s
    """

    INSERT_MEMORY = """
        INSERT INTO agent_memories (user_id, type, content, metadata, score, created_at)
        VALUES (%(user_id)s, %(type)s, %(content)s, %(metadata)s, %(score)s, %(created_at)s)
        RETURNING id
    """

    RECENT_MEMORIES = """
        SELECT * FROM agent_memories
        WHERE user_id = %(user_id)s AND type = %(type)s
        ORDER BY created_at DESC, id DESC
        LIMIT %(limit)s
    """

    def __init__(self, conninfo: str, min_size: int = 1, max_size: int = 10, pool: ConnectionPool = None):
        self.pool = pool or ConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            open=True,
        )

    @contextmanager
    def _cursor(self):
        with self.pool.connection() as conn:
            conn.row_factory = dict_row
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()

    def query(self, text, params=None) -> list[dict]:
        """Execute a query and return results as list of dicts."""
        with self._cursor() as cursor:
            cursor.execute(text, params or {})
            if cursor.description:
                return cursor.fetchall()
            return []

    def ensure_schema(self) -> None:
        """Create tables and indexes if missing."""
        with self._cursor() as cursor:
            cursor.execute(SCHEMA)
        logger.info('Store schema ready')

    def save_task(self, task: Task) -> None:
        data = task.to_dict()
        data["plan"] = Jsonb(data["plan"])
        data["observations"] = Jsonb(data["observations"])
        self.query(self.UPSERT_TASK, data)

    def get_task(self, task_id: str) -> Optional[Task]:
        rows = self.query(self.LOAD_TASK, {"id": task_id})
        return Task.from_dict(rows[0]) if rows else None

    def get_user_tasks(self, user_id: str, limit: int = 20) -> list[Task]:
        rows = self.query(self.USER_TASKS, {"user_id": user_id, "limit": limit})
        return [Task.from_dict(row) for row in rows]

    def save_memory(
        self,
        user_id: str,
        memory_type: str,
        content: str,
        metadata: Optional[dict] = None,
        score: float = 0.7,
    ) -> int:
        rows = self.query(self.INSERT_MEMORY, {
            "user_id": user_id,
            "type": memory_type,
            "content": content,
            "metadata": Jsonb(metadata or {}),
            "score": score,
            "created_at": now_ms(),
        })
        return rows[0]["id"]

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

        sql = "SELECT * FROM agent_memories WHERE user_id = %(user_id)s"
        params = {"user_id": user_id, "limit": limit}

        if memory_type:
            sql += " AND type = %(type)s"
            params["type"] = memory_type

        conditions = []
        for i, word in enumerate(words):
            conditions.append(f"LOWER(content) LIKE %(w{i})s")
            params[f"w{i}"] = f"%{word}%"
        sql += f" AND ({' OR '.join(conditions)})"

        sql += " ORDER BY score DESC, created_at DESC, id DESC LIMIT %(limit)s"

        return [self._to_memory(row) for row in self.query(sql, params)]

    def get_recent_memories(self, user_id: str, memory_type: str, limit: int = 10) -> list[Memory]:
        rows = self.query(self.RECENT_MEMORIES, {
            "user_id": user_id,
            "type": memory_type,
            "limit": limit,
        })
        return [self._to_memory(row) for row in rows]

    def get_stats(self) -> dict:
        rows = self.query("""
            SELECT
                (SELECT COUNT(*) FROM agent_tasks) AS tasks,
                (SELECT COUNT(*) FROM agent_memories) AS memories
        """)
        return {"tasks": rows[0]["tasks"], "memories": rows[0]["memories"]}

    def close(self) -> None:
        """Close all connections in the pool."""
        try:
            self.pool.close()
        except Exception as e:
            logger.error('Failed to close store pool', err=e)

    @staticmethod
    def _to_memory(row: dict) -> Memory:
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            content=row["content"],
            metadata=row.get("metadata") or {},
            score=float(row["score"]),
            created_at=row["created_at"],
        )
