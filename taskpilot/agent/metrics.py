"""
Agent Metrics

Counters, gauges and histograms for tasks, steps, tools and LLM calls,
exportable as Prometheus text.
"""

import threading
import time
from collections import defaultdict
from typing import Optional


def _label_key(labels: dict) -> tuple:
    return tuple(sorted(labels.items()))


class _LabeledMetric:
    """Shared storage for a value with optional label breakdowns."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._value = 0.0
        self._lock = threading.Lock()
        self._labels: dict[tuple, float] = defaultdict(float)

    def get(self, **labels) -> float:
        """Get the value, overall or for one label combination."""
        with self._lock:
            if labels:
                return self._labels.get(_label_key(labels), 0.0)
            return self._value

    def get_labeled(self) -> dict[tuple, float]:
        with self._lock:
            return dict(self._labels)


class Counter(_LabeledMetric):
    """A monotonically increasing counter metric."""

    def inc(self, value: float = 1.0, **labels) -> None:
        """Increment the counter; labeled increments also count toward the total."""
        with self._lock:
            self._value += value
            if labels:
                self._labels[_label_key(labels)] += value


class Gauge(_LabeledMetric):
    """A metric that can increase or decrease."""

    def set(self, value: float, **labels) -> None:
        with self._lock:
            if labels:
                self._labels[_label_key(labels)] = value
            else:
                self._value = value

    def inc(self, value: float = 1.0, **labels) -> None:
        with self._lock:
            if labels:
                self._labels[_label_key(labels)] += value
            else:
                self._value += value

    def dec(self, value: float = 1.0, **labels) -> None:
        self.inc(-value, **labels)


class Histogram:
    """A metric that tracks value distribution."""

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

    def __init__(self, name: str, description: str = "", buckets: tuple = None):
        self.name = name
        self.description = description
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._lock = threading.Lock()
        self._counts = {b: 0 for b in self.buckets}
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[bucket] += 1

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "count": self._count,
                "sum": self._sum,
                "avg": self._sum / self._count if self._count > 0 else 0,
                "buckets": {f"le_{b}": c for b, c in self._counts.items()},
            }


class Timer:
    """Context manager for timing operations."""

    def __init__(self, histogram: Histogram):
        self.histogram = histogram
        self._start: Optional[float] = None

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._start is not None:
            self.histogram.observe(time.monotonic() - self._start)
        return False


class AgentMetrics:
    """
    Metrics registry for the agent.

    Tracks:
    - Task outcomes, concurrency and duration
    - Step outcomes, retries and replans
    - Tool calls, errors and duration
    - LLM calls, errors, tokens and latency
    - Background loop runs and failures
    """

    def __init__(self):
        self.tasks_total = Counter("agent_tasks_total", "Tasks submitted")
        self.tasks_completed = Counter("agent_tasks_completed_total", "Tasks completed")
        self.tasks_failed = Counter("agent_tasks_failed_total", "Tasks failed")
        self.tasks_active = Gauge("agent_tasks_active", "Tasks currently running")
        self.task_duration = Histogram(
            "agent_task_duration_seconds",
            "Wall-clock task duration",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
        )

        self.steps_total = Counter("agent_steps_total", "Steps finished")
        self.step_retries_total = Counter("agent_step_retries_total", "Step retry attempts")
        self.replans_total = Counter("agent_replans_total", "Replans requested")

        self.tool_calls_total = Counter("agent_tool_calls_total", "Tool calls")
        self.tool_errors_total = Counter("agent_tool_errors_total", "Tool call errors")
        self.tool_duration = Histogram(
            "agent_tool_duration_seconds",
            "Tool execution duration",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
        )

        self.llm_calls_total = Counter("agent_llm_calls_total", "LLM API calls")
        self.llm_errors_total = Counter("agent_llm_errors_total", "LLM API errors")
        self.llm_tokens_total = Counter("agent_llm_tokens_total", "Tokens used in LLM calls")
        self.llm_latency = Histogram(
            "agent_llm_latency_seconds",
            "LLM API call latency",
            buckets=(0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        self.loop_runs_total = Counter("agent_loop_runs_total", "Background loop runs")
        self.loop_failures_total = Counter("agent_loop_failures_total", "Background loop failures")

    def time_tool(self) -> Timer:
        return Timer(self.tool_duration)

    def time_llm(self) -> Timer:
        return Timer(self.llm_latency)

    def record_task_start(self) -> None:
        self.tasks_total.inc()
        self.tasks_active.inc()

    def record_task_complete(self, success: bool, duration_seconds: float) -> None:
        self.tasks_active.dec()
        if success:
            self.tasks_completed.inc()
        else:
            self.tasks_failed.inc()
        self.task_duration.observe(duration_seconds)

    def record_step(self, status: str) -> None:
        self.steps_total.inc(status=status)

    def record_tool_call(self, tool_name: str, success: bool) -> None:
        self.tool_calls_total.inc(tool=tool_name)
        if not success:
            self.tool_errors_total.inc(tool=tool_name)

    def record_llm_call(self, success: bool, tokens: int = 0) -> None:
        self.llm_calls_total.inc()
        if not success:
            self.llm_errors_total.inc()
        if tokens > 0:
            self.llm_tokens_total.inc(tokens)

    def record_loop_run(self, loop_name: str, success: bool) -> None:
        self.loop_runs_total.inc(loop=loop_name)
        if not success:
            self.loop_failures_total.inc(loop=loop_name)

    def get_summary(self) -> dict:
        """Get a summary of all metrics."""
        return {
            "tasks": {
                "total": self.tasks_total.get(),
                "active": self.tasks_active.get(),
                "completed": self.tasks_completed.get(),
                "failed": self.tasks_failed.get(),
                "duration": self.task_duration.get_stats(),
            },
            "steps": {
                "total": self.steps_total.get(),
                "retries": self.step_retries_total.get(),
                "replans": self.replans_total.get(),
            },
            "tools": {
                "calls_total": self.tool_calls_total.get(),
                "errors_total": self.tool_errors_total.get(),
                "duration": self.tool_duration.get_stats(),
            },
            "llm": {
                "calls_total": self.llm_calls_total.get(),
                "errors_total": self.llm_errors_total.get(),
                "tokens_total": self.llm_tokens_total.get(),
                "latency": self.llm_latency.get_stats(),
            },
            "loops": {
                "runs_total": self.loop_runs_total.get(),
                "failures_total": self.loop_failures_total.get(),
            },
        }

    def to_prometheus_format(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        def add_metric(metric, metric_type: str):
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric_type}")
            lines.append(f"{metric.name} {metric.get()}")
            for key, value in sorted(metric.get_labeled().items()):
                label_str = ",".join(f'{k}="{v}"' for k, v in key)
                lines.append(f"{metric.name}{{{label_str}}} {value}")

        for counter in (
            self.tasks_total, self.tasks_completed, self.tasks_failed,
            self.steps_total, self.step_retries_total, self.replans_total,
            self.tool_calls_total, self.tool_errors_total,
            self.llm_calls_total, self.llm_errors_total, self.llm_tokens_total,
            self.loop_runs_total, self.loop_failures_total,
        ):
            add_metric(counter, "counter")
        add_metric(self.tasks_active, "gauge")

        for histogram in (self.task_duration, self.tool_duration, self.llm_latency):
            stats = histogram.get_stats()
            lines.append(f"# HELP {histogram.name} {histogram.description}")
            lines.append(f"# TYPE {histogram.name} histogram")
            for bucket in histogram.buckets:
                lines.append(f'{histogram.name}_bucket{{le="{bucket}"}} {stats["buckets"][f"le_{bucket}"]}')
            lines.append(f'{histogram.name}_bucket{{le="+Inf"}} {stats["count"]}')
            lines.append(f"{histogram.name}_sum {stats['sum']}")
            lines.append(f"{histogram.name}_count {stats['count']}")

        return "\n".join(lines) + "\n"


_metrics: Optional[AgentMetrics] = None


def get_metrics() -> AgentMetrics:
    """Get or create the process-wide metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = AgentMetrics()
    return _metrics


def reset_metrics() -> None:
    """Reset the process-wide metrics instance (for testing)."""
    global _metrics
    _metrics = AgentMetrics()
