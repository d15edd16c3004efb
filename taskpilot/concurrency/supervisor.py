"""
Background Loop Supervisor

Runs registered functions periodically, each with its own circuit breaker:
after `max_failures` consecutive failures the loop is skipped until its
backoff expires (5 min, tripled per further failure, capped at 2 h).

Nothing runs until start() is called. tick() runs one guarded iteration
and is what tests drive with a fake clock.
"""

from dataclasses import dataclass
import threading
import time
from typing import Callable, Optional

from taskpilot import config
from taskpilot.logger import info, warn, error, debug


@dataclass
class LoopState:
    name: str
    fn: Callable[[], None]
    interval_ms: int
    max_failures: int = 3
    consecutive_failures: int = 0
    backoff_until: float = 0.0
    last_run: Optional[float] = None
    last_error: Optional[str] = None
    runs: int = 0


class LoopSupervisor:
    """Periodic task runner with per-loop circuit breakers."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        backoff_base_ms: int = None,
        backoff_cap_ms: int = None,
        metrics=None,
    ):
        self.clock = clock
        self.backoff_base_ms = backoff_base_ms or config.LOOP_CONFIG['backoff_base_ms']
        self.backoff_cap_ms = backoff_cap_ms or config.LOOP_CONFIG['backoff_cap_ms']
        self.metrics = metrics

        self._loops: dict[str, LoopState] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def register(self, name: str, fn: Callable[[], None], interval_ms: int, max_failures: int = 3) -> None:
        with self._lock:
            if name in self._loops:
                raise ValueError(f"Loop '{name}' already registered")
            self._loops[name] = LoopState(name=name, fn=fn, interval_ms=interval_ms, max_failures=max_failures)
        info(f"Registered loop: {name}", interval_ms=interval_ms, max_failures=max_failures)

    def backoff_ms(self, failures: int, max_failures: int) -> int:
        return min(self.backoff_base_ms * 3 ** (failures - max_failures), self.backoff_cap_ms)

    def tick(self, name: str) -> bool:
        """
        Run one iteration of a loop unless it is in backoff.

        Returns True if the body was invoked (whether or not it succeeded).
        """
        loop = self._loops[name]
        now = self.clock()

        if now < loop.backoff_until:
            debug(f"Loop {name} in backoff, skipping",
                  remaining_ms=int((loop.backoff_until - now) * 1000))
            return False

        loop.last_run = now
        loop.runs += 1
        try:
            loop.fn()
        except Exception as e:
            with self._lock:
                loop.consecutive_failures += 1
                loop.last_error = str(e)
                failures = loop.consecutive_failures
                if failures >= loop.max_failures:
                    delay = self.backoff_ms(failures, loop.max_failures)
                    loop.backoff_until = now + delay / 1000
            error(f"Loop {name} failed ({failures}/{loop.max_failures})", err=e)
            if failures >= loop.max_failures:
                warn(f"Circuit breaker open for {name}", backoff_ms=delay, failures=failures)
            if self.metrics:
                self.metrics.record_loop_run(name, False)
            return True

        with self._lock:
            loop.consecutive_failures = 0
            loop.backoff_until = 0.0
            loop.last_error = None
        if self.metrics:
            self.metrics.record_loop_run(name, True)
        return True

    def _run(self, name: str) -> None:
        interval = self._loops[name].interval_ms / 1000
        while not self._stop_event.wait(interval):
            self.tick(name)

    def start(self) -> None:
        """Start one thread per registered loop."""
        if self._threads:
            warn("Supervisor already running")
            return

        self._stop_event.clear()
        for name in list(self._loops):
            thread = threading.Thread(target=self._run, args=(name,), name=f"loop-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)
        info("Loop supervisor started", loops=list(self._loops))

    def stop(self, timeout: float = 5.0) -> None:
        if not self._threads:
            return
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        info("Loop supervisor stopped")

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def get_status(self) -> dict:
        now = self.clock()
        with self._lock:
            return {
                name: {
                    "interval_ms": loop.interval_ms,
                    "runs": loop.runs,
                    "last_run": loop.last_run,
                    "consecutive_failures": loop.consecutive_failures,
                    "max_failures": loop.max_failures,
                    "in_backoff": now < loop.backoff_until,
                    "backoff_remaining_ms": max(0, int((loop.backoff_until - now) * 1000)),
                    "last_error": loop.last_error,
                }
                for name, loop in self._loops.items()
            }
