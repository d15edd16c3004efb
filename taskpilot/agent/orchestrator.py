"""
Agent Orchestrator

The plan -> execute -> observe -> adapt -> synthesize -> learn loop.

One orchestrator owns its provider, tool registry and store. Each task's
steps run sequentially on the calling thread; start_task() runs distinct
tasks concurrently on a bounded worker pool.
"""

from concurrent.futures import ThreadPoolExecutor
import json
import re
import threading
import time
import uuid
from typing import Any, Callable, Optional

from taskpilot import config
from taskpilot.errors import (
    PlanningError,
    ProviderError,
    TaskTimeoutError,
    ValidationError,
)
from taskpilot.logger import info, error, warn, debug
from taskpilot.providers import ChatOptions, LLMMessage, LLMProvider, LLMResponse

from . import prompts
from .chat_router import looks_like_task
from .learning import learn_from_task, relevant_context
from .metrics import AgentMetrics, get_metrics
from .models import Step, StepStatus, Task, TaskStatus
from .plan_parser import build_steps, decode_plan
from .tools import ToolRegistry, ToolResult


MIN_GOAL_CHARS = 2
MAX_GOAL_CHARS = 5000
MAX_PLACEHOLDER_CHARS = 2000
MAX_SYNTHESIS_OUTPUT_CHARS = 400
MAX_TRACE_CHARS = 300

THINK_TOOL = "think"
THINK_DESCRIPTION = """**think** [reasoning]
Reason with the language model over the results so far (compare, decide, draft, summarize).
Parameters:
  - question [string] (optional): What to reason about; defaults to the step action"""

PLACEHOLDER_RE = re.compile(r"\{\{\s*step_(\d+)(?:\.([\w\-]+))?\s*\}\}")
NO_RESULTS = "Task completed with no captured results."


def _serialize(value: Any, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:limit]


class AgentOrchestrator:
    """
    Runs goals to completion.

    Responsibilities:
    - Goal validation and planning with memory context
    - Step execution with retries, exponential backoff and replanning
    - Snapshotting every transition to the store
    - Result synthesis and learning extraction
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        store,
        max_steps: int = None,
        max_retries: int = None,
        max_replans: int = None,
        task_timeout_ms: int = None,
        retry_base_delay_ms: int = None,
        max_concurrent_tasks: int = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        metrics: AgentMetrics = None,
    ):
        self.provider = provider
        self.registry = registry
        self.store = store

        self.max_steps = max_steps if max_steps is not None else config.MAX_PLAN_STEPS
        self.max_retries = max_retries if max_retries is not None else config.MAX_RETRIES
        self.max_replans = max_replans if max_replans is not None else config.MAX_REPLANS
        self.task_timeout_ms = task_timeout_ms if task_timeout_ms is not None else config.TASK_TIMEOUT_MS
        self.retry_base_delay_ms = (
            retry_base_delay_ms if retry_base_delay_ms is not None else config.RETRY_BASE_DELAY_MS
        )
        self.max_concurrent_tasks = max_concurrent_tasks or config.MAX_CONCURRENT_TASKS

        self.clock = clock
        self.sleep = sleep
        self.metrics = metrics or get_metrics()

        self._running: dict[str, Task] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

        self._tasks_completed = 0
        self._tasks_failed = 0

    # ── Entry points ────────────────────────────────────────────────

    def submit_task(self, goal: str, context: str = None, user_id: str = "default") -> Task:
        """
        Run a goal to completion on the calling thread.

        Raises ValidationError for a malformed goal. Every other failure is
        reported through the returned task's status and error.
        """
        task = self._create_task(goal, context, user_id)
        return self._run(task)

    def start_task(self, goal: str, context: str = None, user_id: str = "default") -> str:
        """
        Run a goal in the background and return its task id.

        The pending snapshot is saved before this returns, so get_task()
        always finds it.
        """
        task = self._create_task(goal, context, user_id)
        self.store.save_task(task)

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_concurrent_tasks,
                    thread_name_prefix="task",
                )
            future = self._executor.submit(self._run, task)

        def on_done(f):
            if f.exception():
                error("Task worker crashed", task_id=task.id, err=f.exception())

        future.add_done_callback(on_done)
        return task.id

    def get_task(self, task_id: str) -> Optional[Task]:
        """Latest persisted snapshot of a task."""
        return self.store.get_task(task_id)

    def chat(self, message: str, user_id: str = "default", history: list = None) -> dict:
        """
        Handle a chat message.

        Messages that look like tasks run the full loop; anything else is a
        single conversational turn seeded with matching memories. History is
        a list of {"role", "content"} dicts or LLMMessage objects, oldest first.
        """
        if not message or not message.strip():
            raise ValidationError("Message must not be empty")

        if looks_like_task(message):
            task = self.submit_task(message, user_id=user_id)
            summary = self.summarize_task(task)
            summary["response"] = task.result or task.error or "Task completed"
            summary["autonomous"] = True
            return summary

        try:
            memories = self.store.search_memories(user_id, message, limit=3)
        except Exception as e:
            warn("Memory lookup failed", error=str(e))
            memories = []

        messages = [LLMMessage("system", prompts.chat_system_prompt(memories))]
        for item in history or []:
            if isinstance(item, LLMMessage):
                messages.append(item)
            else:
                messages.append(LLMMessage(item["role"], item["content"]))
        messages.append(LLMMessage("user", message))

        response = self._call_llm(messages)
        return {
            "response": response.content,
            "autonomous": False,
            "model": response.model,
            "tokens_used": response.total_tokens,
        }

    def summarize_task(self, task: Task) -> dict:
        """User-visible outcome with the full step trace."""
        return {
            "task_id": task.id,
            "goal": task.goal,
            "status": task.status.value,
            "error": task.error,
            "result": task.result,
            "tokens_used": task.tokens_used,
            "duration_ms": task.duration_ms,
            "replans": task.replans,
            "steps": [
                {
                    "index": s.index,
                    "action": s.action,
                    "tool": s.tool,
                    "status": s.status.value,
                    "retries": s.retries,
                    "output": _serialize(s.output, MAX_TRACE_CHARS) if s.output is not None else None,
                    "error": s.error[:MAX_TRACE_CHARS] if s.error else None,
                }
                for s in task.plan
            ],
        }

    def get_status(self) -> dict:
        with self._lock:
            running = list(self._running)
        return {
            "running_tasks": running,
            "running": len(running),
            "tasks_completed": self._tasks_completed,
            "tasks_failed": self._tasks_failed,
            "provider": getattr(self.provider, "name", type(self.provider).__name__),
            "tools": len(self.registry.list_tools()),
            "limits": {
                "max_steps": self.max_steps,
                "max_retries": self.max_retries,
                "max_replans": self.max_replans,
                "task_timeout_ms": self.task_timeout_ms,
            },
        }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting background tasks."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor:
            executor.shutdown(wait=wait)
        self.registry.shutdown()

    # ── Lifecycle ──────────────────────────────────────────────────

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _create_task(self, goal: str, context: Optional[str], user_id: str) -> Task:
        if not isinstance(goal, str):
            raise ValidationError("Goal must be a string")
        goal = goal.strip()
        if not MIN_GOAL_CHARS <= len(goal) <= MAX_GOAL_CHARS:
            raise ValidationError(
                f"Goal must be {MIN_GOAL_CHARS}-{MAX_GOAL_CHARS} characters (got {len(goal)})"
            )

        started = self._now_ms()
        return Task(
            id=f"task_{started}_{uuid.uuid4().hex[:8]}",
            goal=goal,
            user_id=user_id or "default",
            context=context or "",
            started_at=started,
        )

    def _save(self, task: Task) -> None:
        self.store.save_task(task)

    def _run(self, task: Task) -> Task:
        with self._lock:
            self._running[task.id] = task
        self.metrics.record_task_start()

        info("Task started", task_id=task.id, user_id=task.user_id, goal=task.goal[:200])
        deadline = task.started_at + self.task_timeout_ms

        try:
            task.status = TaskStatus.PLANNING
            self._save(task)

            memory = relevant_context(self.store, task.user_id, task.goal)
            task.plan = self._plan(task, memory)
            task.status = TaskStatus.EXECUTING
            self._save(task)

            self._execute(task, deadline)

            task.result = self._synthesize(task)
            task.status = TaskStatus.COMPLETED

        except (PlanningError, TaskTimeoutError) as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            error("Task failed", task_id=task.id, error=str(e))

        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e) or type(e).__name__
            error("Task failed with unexpected error", task_id=task.id, err=e)

        task.completed_at = self._now_ms()
        self._save(task)

        learn_from_task(self.store, task)

        success = task.status == TaskStatus.COMPLETED
        with self._lock:
            self._running.pop(task.id, None)
            if success:
                self._tasks_completed += 1
            else:
                self._tasks_failed += 1
        self.metrics.record_task_complete(success, task.duration_ms / 1000)

        info(f"Task {task.status.value}",
             task_id=task.id,
             duration_ms=task.duration_ms,
             tokens=task.tokens_used,
             steps=len(task.plan),
             replans=task.replans)
        return task

    # ── LLM ────────────────────────────────────────────────────────

    def _call_llm(self, messages: list[LLMMessage], options: ChatOptions = None,
                  task: Task = None) -> LLMResponse:
        success = False
        tokens = 0
        try:
            with self.metrics.time_llm():
                response = self.provider.chat(messages, options)
            success = True
            tokens = response.total_tokens
            if task is not None:
                task.tokens_used += tokens
            return response
        finally:
            self.metrics.record_llm_call(success, tokens)

    def _tool_catalog(self) -> str:
        return self.registry.get_prompt_descriptions() + "\n" + THINK_DESCRIPTION

    # ── Planning ───────────────────────────────────────────────────

    def _plan(self, task: Task, memory: str) -> list[Step]:
        catalog = self._tool_catalog()

        response = self._call_llm([
            LLMMessage("system", prompts.PLANNER_SYSTEM),
            LLMMessage("user", prompts.plan_prompt(task.goal, catalog, task.context, memory)),
        ], ChatOptions(temperature=0.3), task=task)
        decoded = decode_plan(response.content)

        if not decoded.ok or not decoded.steps:
            problem = decoded.error or "plan had no steps"
            warn("Plan unparsable, retrying with strict instruction", task_id=task.id, problem=problem)

            response = self._call_llm([
                LLMMessage("system", prompts.STRICT_PLANNER_SYSTEM),
                LLMMessage("user", prompts.strict_plan_prompt(task.goal, catalog, task.context, problem)),
            ], ChatOptions(temperature=0.0), task=task)
            decoded = decode_plan(response.content)

            if not decoded.ok or not decoded.steps:
                raise PlanningError(
                    f"Planner returned no usable steps after retry: {decoded.error or 'plan had no steps'}"
                )

        steps = build_steps(decoded.steps, task.id, 0, self.max_steps)
        info(f"Plan: {len(steps)} steps",
             task_id=task.id,
             strategy=decoded.strategy,
             steps=[f"[{s.tool or 'note'}] {s.action}" for s in steps])
        return steps

    def _replan(self, task: Task, failed_step: Step) -> list[Step]:
        response = self._call_llm([
            LLMMessage("system", prompts.REPLANNER_SYSTEM),
            LLMMessage("user", prompts.replan_prompt(task, failed_step, self._tool_catalog())),
        ], ChatOptions(temperature=0.5), task=task)

        decoded = decode_plan(response.content)
        if not decoded.ok:
            warn("Replan unparsable, keeping current plan", task_id=task.id, problem=decoded.error)
            return []

        remaining = max(self.max_steps - (task.current_step + 1), 0)
        return build_steps(decoded.steps, task.id, task.next_step_index(), remaining)

    # ── Execution ──────────────────────────────────────────────────

    def _execute(self, task: Task, deadline: int) -> None:
        while task.current_step < len(task.plan):
            if self._now_ms() > deadline:
                raise TaskTimeoutError(
                    f"Task timed out after {self.task_timeout_ms / 1000:g}s "
                    f"({len(task.successful_steps())} steps succeeded)"
                )

            step = task.plan[task.current_step]
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.RUNNING
                step.started_at = self._now_ms()
                self._save(task)
                debug(f"Step {step.number}/{len(task.plan)}: {step.action}", task_id=task.id, tool=step.tool)

            if not step.tool:
                step.status = StepStatus.SUCCESS
                step.completed_at = self._now_ms()
                task.observe(step.index, "info", f"Reasoning: {step.action}", self._now_ms())
                self.metrics.record_step(step.status.value)
                self._advance(task)
                continue

            result = self._attempt(task, step)

            if result.success:
                step.status = StepStatus.SUCCESS
                step.output = result.data
                step.error = None
                step.completed_at = self._now_ms()
                task.observe(step.index, "result",
                             f"{step.tool} succeeded: {_serialize(result.data, MAX_TRACE_CHARS)}",
                             self._now_ms())
                self.metrics.record_step(step.status.value)
                self._advance(task)
                continue

            step.error = result.error or "Unknown error"

            if step.retries < self.max_retries:
                step.retries += 1
                task.observe(step.index, "error",
                             f"Retry {step.retries}/{self.max_retries}: {step.error}",
                             self._now_ms())
                self._save(task)
                self.metrics.step_retries_total.inc()

                delay_ms = self.retry_base_delay_ms * 2 ** (step.retries - 1)
                warn(f"Step {step.number} failed, retrying in {delay_ms}ms",
                     task_id=task.id, tool=step.tool, error=step.error)
                self.sleep(delay_ms / 1000)
                continue

            step.status = StepStatus.FAILED
            step.completed_at = self._now_ms()
            task.observe(step.index, "error",
                         f"FAILED after {step.retries} retries: {step.error}",
                         self._now_ms())
            self.metrics.record_step(step.status.value)
            warn(f"Step {step.number} failed permanently", task_id=task.id, tool=step.tool, error=step.error)

            if task.replans < self.max_replans:
                self._adapt(task, step)

            self._advance(task)

    def _advance(self, task: Task) -> None:
        task.current_step += 1
        self._save(task)

    def _adapt(self, task: Task, failed_step: Step) -> None:
        """Replace the remaining plan with a fresh one from the planner."""
        task.status = TaskStatus.REPLANNING
        task.replans += 1
        self._save(task)
        self.metrics.replans_total.inc()
        info(f"Replanning ({task.replans}/{self.max_replans})", task_id=task.id)

        try:
            new_steps = self._replan(task, failed_step)
        except ProviderError as e:
            warn("Replan request failed, keeping current plan", task_id=task.id, error=str(e))
            new_steps = []

        if new_steps:
            task.plan = task.plan[:task.current_step + 1] + new_steps
            task.observe(failed_step.index, "info",
                         f"Replanned with {len(new_steps)} new steps",
                         self._now_ms())
            info(f"New plan: {len(new_steps)} steps", task_id=task.id)

        task.status = TaskStatus.EXECUTING

    def _attempt(self, task: Task, step: Step) -> ToolResult:
        args = self._resolve_placeholders(task, step.args)

        if step.tool == THINK_TOOL and not self.registry.has(THINK_TOOL):
            return self._think(task, step, args)

        tool = self.registry.get(step.tool)
        if tool is not None and tool.accepts("user_id") and "user_id" not in args:
            args["user_id"] = task.user_id

        with self.metrics.time_tool():
            result = self.registry.execute(step.tool, args)
        self.metrics.record_tool_call(step.tool, result.success)
        return result

    def _think(self, task: Task, step: Step, args: dict) -> ToolResult:
        try:
            response = self._call_llm([
                LLMMessage("system", prompts.THINKER_SYSTEM),
                LLMMessage("user", prompts.think_prompt(task, step, args)),
            ], task=task)
        except ProviderError as e:
            return ToolResult(success=False, error=f"Reasoning call failed: {e}")

        if not response.content.strip():
            return ToolResult(success=False, error="Reasoning call returned no content")
        return ToolResult(success=True, data=response.content.strip())

    def _resolve_placeholders(self, task: Task, value: Any) -> Any:
        """Substitute {{step_N}} / {{step_N.key}} with earlier step outputs."""
        if isinstance(value, dict):
            return {k: self._resolve_placeholders(task, v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_placeholders(task, v) for v in value]
        if not isinstance(value, str) or "{{" not in value:
            return value

        def replace(match):
            source = task.get_step(int(match.group(1)) - 1)
            if source is None or source.output is None:
                return match.group(0)

            output = source.output
            key = match.group(2)
            if key is not None:
                if isinstance(output, dict) and key in output:
                    output = output[key]
                elif isinstance(output, list) and key.isdigit() and int(key) < len(output):
                    output = output[int(key)]
                else:
                    return match.group(0)
            return _serialize(output, MAX_PLACEHOLDER_CHARS)

        return PLACEHOLDER_RE.sub(replace, value)

    # ── Synthesis ──────────────────────────────────────────────────

    def _synthesize(self, task: Task) -> str:
        results = "\n\n".join(
            f'Step "{s.action}": {_serialize(s.output, MAX_SYNTHESIS_OUTPUT_CHARS)}'
            for s in task.successful_steps()
            if s.output not in (None, "", [], {})
        )
        if not results:
            return NO_RESULTS

        response = self._call_llm([
            LLMMessage("system", prompts.SYNTHESIZER_SYSTEM),
            LLMMessage("user", prompts.synthesis_prompt(task.goal, results)),
        ], task=task)
        return response.content.strip() or NO_RESULTS


def create_orchestrator(provider: LLMProvider = None, store=None, guard=None, driver=None,
                        workspace=None, **kwargs) -> AgentOrchestrator:
    """Build an orchestrator from environment configuration."""
    from taskpilot.concurrency import ResourceGuard
    from taskpilot.providers import create_provider_from_env
    from taskpilot.store import create_store
    from .tools import create_default_registry

    provider = provider or create_provider_from_env()
    store = store or create_store()
    guard = guard or ResourceGuard("browser")
    registry = create_default_registry(store, guard=guard, driver=driver, workspace=workspace)

    orchestrator = AgentOrchestrator(provider, registry, store, **kwargs)
    info("Orchestrator initialized",
         provider=orchestrator.provider.name,
         tools=len(registry.list_tools()))
    return orchestrator

