"""
Tests for the resource guard and the loop supervisor.
"""

import gc
import json
import threading
import weakref

import pytest

from taskpilot.agent.metrics import AgentMetrics
from taskpilot.concurrency import LoopSupervisor, ResourceGuard
from taskpilot.concurrency import mutex
from taskpilot.errors import LockBusyError


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def terminations():
    return []


@pytest.fixture
def guard(tmp_path, clock, terminations):
    return ResourceGuard(
        "browser",
        lock_dir=str(tmp_path),
        stale_seconds=300,
        terminator=lambda: terminations.append(True),
        clock=clock,
    )


class TestResourceGuard:
    """Exclusive claim, refusal, stale reclaim and release."""

    def test_acquire_writes_record(self, guard, clock):
        result = guard.acquire("web_search: weather")

        assert result
        assert result.acquired
        record = json.loads(guard.lock_path.read_text())
        assert record == {"label": "web_search: weather", "startedAtMs": int(clock.now * 1000)}
        assert guard.lock_path.name == ".browser_lock.json"

    def test_fresh_lock_refuses(self, guard, clock):
        guard.acquire("first")
        clock.now += 42

        result = guard.acquire("second")

        assert not result
        assert result.holder == "first"
        assert result.age_seconds == 42
        assert result.reason == "browser busy with 'first'"

    def test_stale_lock_reclaimed(self, guard, clock, terminations):
        guard.acquire("abandoned")
        clock.now += 300

        result = guard.acquire("rescuer")

        assert result.acquired
        assert result.reclaimed
        assert result.holder == "abandoned"
        assert terminations == [True]
        assert json.loads(guard.lock_path.read_text())["label"] == "rescuer"

    def test_corrupt_record_is_stale(self, guard, terminations):
        guard.lock_path.write_text("{not json")

        result = guard.acquire("next")

        assert result.reclaimed
        assert terminations == [True]

    def test_release_only_by_holder(self, guard):
        guard.acquire("owner")

        assert guard.release("intruder") is False
        assert guard.lock_path.exists()
        assert guard.release("owner") is True
        assert not guard.lock_path.exists()
        assert guard.release("owner") is False

    def test_hold_context(self, guard):
        with guard.hold("job"):
            assert guard.status()["holder"] == "job"
            with pytest.raises(LockBusyError) as exc:
                with guard.hold("other"):
                    pass
            assert exc.value.holder == "job"

        assert not guard.lock_path.exists()

    def test_hold_releases_on_error(self, guard):
        with pytest.raises(RuntimeError):
            with guard.hold("job"):
                raise RuntimeError("driver crashed")

        assert not guard.lock_path.exists()

    def test_periodic_caller(self, guard):
        assert guard.check_for_periodic_caller("digest") is True
        assert guard.check_for_periodic_caller("digest again") is False
        guard.release("digest")

    def test_status(self, guard, clock):
        assert guard.status() == {
            "resource": "browser", "locked": False, "holder": None, "age_seconds": None, "stale": False,
        }

        guard.acquire("job")
        clock.now += 10
        assert guard.status() == {
            "resource": "browser", "locked": True, "holder": "job", "age_seconds": 10, "stale": False,
        }

        clock.now += 300
        status = guard.status()
        assert status["stale"] is True
        assert status["locked"] is False

    def test_exit_cleanup_releases_own_locks(self, guard):
        guard.acquire("job")

        mutex._release_live_guards()

        assert not guard.lock_path.exists()

    def test_exit_cleanup_does_not_keep_guards_alive(self, tmp_path):
        guard = ResourceGuard("browser", lock_dir=str(tmp_path), terminator=lambda: None)
        ref = weakref.ref(guard)
        assert guard in mutex._live_guards

        del guard
        gc.collect()

        assert ref() is None

    def test_two_guards_share_the_file(self, tmp_path, clock):
        one = ResourceGuard("browser", lock_dir=str(tmp_path), terminator=lambda: None, clock=clock)
        two = ResourceGuard("browser", lock_dir=str(tmp_path), terminator=lambda: None, clock=clock)

        assert one.acquire("a")
        assert not two.acquire("b")


class TestLoopSupervisor:
    """Circuit breaker and backoff."""

    @pytest.fixture
    def supervisor(self, clock):
        return LoopSupervisor(clock=clock, backoff_base_ms=300_000, backoff_cap_ms=7_200_000,
                              metrics=AgentMetrics())

    def test_backoff_schedule(self, supervisor):
        assert supervisor.backoff_ms(3, 3) == 300_000
        assert supervisor.backoff_ms(4, 3) == 900_000
        assert supervisor.backoff_ms(5, 3) == 2_700_000
        assert supervisor.backoff_ms(6, 3) == 7_200_000
        assert supervisor.backoff_ms(20, 3) == 7_200_000

    def test_duplicate_name(self, supervisor):
        supervisor.register("a", lambda: None, 1000)

        with pytest.raises(ValueError):
            supervisor.register("a", lambda: None, 1000)

    def test_breaker_opens_after_max_failures(self, supervisor, clock):
        calls = []

        def failing():
            calls.append(clock.now)
            raise RuntimeError("db down")

        supervisor.register("sync", failing, 1000, max_failures=3)

        for _ in range(3):
            assert supervisor.tick("sync") is True

        status = supervisor.get_status()["sync"]
        assert status["consecutive_failures"] == 3
        assert status["in_backoff"] is True
        assert status["backoff_remaining_ms"] == 300_000
        assert status["last_error"] == "db down"

        assert supervisor.tick("sync") is False
        assert len(calls) == 3

        clock.now += 301
        assert supervisor.tick("sync") is True
        assert supervisor.get_status()["sync"]["backoff_remaining_ms"] == 900_000

    def test_failures_below_threshold_do_not_back_off(self, supervisor):
        supervisor.register("sync", lambda: 1 / 0, 1000, max_failures=3)

        supervisor.tick("sync")
        supervisor.tick("sync")

        assert supervisor.get_status()["sync"]["in_backoff"] is False

    def test_success_resets(self, supervisor, clock):
        state = {"fail": True}

        def flaky():
            if state["fail"]:
                raise RuntimeError("nope")

        supervisor.register("sync", flaky, 1000, max_failures=1)
        supervisor.tick("sync")
        clock.now += 301
        state["fail"] = False
        supervisor.tick("sync")

        status = supervisor.get_status()["sync"]
        assert status["consecutive_failures"] == 0
        assert status["in_backoff"] is False
        assert status["last_error"] is None
        assert status["runs"] == 2

    def test_metrics_recorded(self, supervisor):
        supervisor.register("ok", lambda: None, 1000)
        supervisor.register("bad", lambda: 1 / 0, 1000)

        supervisor.tick("ok")
        supervisor.tick("bad")

        assert supervisor.metrics.loop_runs_total.get(loop="ok") == 1
        assert supervisor.metrics.loop_failures_total.get(loop="bad") == 1
        assert supervisor.metrics.loop_failures_total.get(loop="ok") == 0

    def test_threads_run_and_stop(self):
        ran = threading.Event()
        supervisor = LoopSupervisor()
        supervisor.register("fast", ran.set, 10)

        assert not supervisor.running
        supervisor.start()
        try:
            assert ran.wait(2)
            assert supervisor.running
        finally:
            supervisor.stop()

        assert not supervisor.running
