"""
Task Models

Task, Step, Observation and Memory records shared by the orchestrator and
the persistence store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import time


def now_ms() -> int:
    return int(time.time() * 1000)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    REPLANNING = "replanning"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


OBSERVATION_TYPES = ("result", "error", "info")
MEMORY_TYPES = ("task", "learning", "preference", "fact")

MAX_OBSERVATION_CHARS = 500


@dataclass
class Step:
    """One planned action within a task."""
    id: str
    index: int
    action: str
    tool: Optional[str] = None
    args: dict = field(default_factory=dict)
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    error: Optional[str] = None
    retries: int = 0
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    @property
    def number(self) -> int:
        """1-based step number used in prompts and placeholders."""
        return self.index + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "index": self.index,
            "action": self.action,
            "tool": self.tool,
            "args": self.args,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "retries": self.retries,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Step":
        return cls(
            id=data["id"],
            index=data["index"],
            action=data.get("action", ""),
            tool=data.get("tool"),
            args=data.get("args") or {},
            status=StepStatus(data.get("status", "pending")),
            output=data.get("output"),
            error=data.get("error"),
            retries=data.get("retries", 0),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class Observation:
    """Append-only audit record of a step outcome."""
    step_index: int
    type: str  # result, error, info
    content: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "step_index": self.step_index,
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Observation":
        return cls(
            step_index=data["step_index"],
            type=data["type"],
            content=data["content"],
            timestamp=data.get("timestamp", 0),
        )


@dataclass
class Task:
    """
    One goal-execution session.

    Owned by a single orchestrator run for its lifetime and persisted after
    every phase and step transition.
    """
    id: str
    goal: str
    user_id: str = "default"
    context: str = ""
    status: TaskStatus = TaskStatus.PENDING
    plan: list[Step] = field(default_factory=list)
    observations: list[Observation] = field(default_factory=list)
    current_step: int = 0
    replans: int = 0
    result: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0
    started_at: int = field(default_factory=now_ms)
    completed_at: Optional[int] = None

    def observe(self, step_index: int, obs_type: str, content: str, timestamp: int = None) -> Observation:
        """Append an observation, truncating its content."""
        obs = Observation(
            step_index=step_index,
            type=obs_type,
            content=content[:MAX_OBSERVATION_CHARS],
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
        self.observations.append(obs)
        return obs

    def get_step(self, index: int) -> Optional[Step]:
        """Find a step by its plan index."""
        for step in self.plan:
            if step.index == index:
                return step
        return None

    def next_step_index(self) -> int:
        """Index for the next new step; always above every existing one."""
        return self.plan[-1].index + 1 if self.plan else 0

    def successful_steps(self) -> list[Step]:
        return [s for s in self.plan if s.status == StepStatus.SUCCESS]

    def failed_steps(self) -> list[Step]:
        return [s for s in self.plan if s.status == StepStatus.FAILED]

    @property
    def duration_ms(self) -> int:
        return (self.completed_at or now_ms()) - self.started_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goal": self.goal,
            "user_id": self.user_id,
            "context": self.context,
            "status": self.status.value,
            "plan": [s.to_dict() for s in self.plan],
            "observations": [o.to_dict() for o in self.observations],
            "current_step": self.current_step,
            "replans": self.replans,
            "result": self.result,
            "error": self.error,
            "tokens_used": self.tokens_used,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=data["id"],
            goal=data["goal"],
            user_id=data.get("user_id", "default"),
            context=data.get("context") or "",
            status=TaskStatus(data.get("status", "pending")),
            plan=[Step.from_dict(s) for s in data.get("plan") or []],
            observations=[Observation.from_dict(o) for o in data.get("observations") or []],
            current_step=data.get("current_step", 0),
            replans=data.get("replans", 0),
            result=data.get("result"),
            error=data.get("error"),
            tokens_used=data.get("tokens_used", 0),
            started_at=data.get("started_at", 0),
            completed_at=data.get("completed_at"),
        )


@dataclass
class Memory:
    """A durable fact. Never mutated; newer higher-scored entries win at query time."""
    id: int
    user_id: str
    type: str
    content: str
    metadata: dict = field(default_factory=dict)
    score: float = 0.7
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "content": self.content,
            "metadata": self.metadata,
            "score": self.score,
            "created_at": self.created_at,
        }
