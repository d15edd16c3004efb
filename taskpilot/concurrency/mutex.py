"""
Resource Guard

Exclusive lock for resources that tolerate one user at a time, such as a
driven browser session. The lock is a small JSON record on disk:

    {"label": "web_search: weather in paris", "startedAtMs": 1718000000000}

A fresh lock refuses new holders and reports its age. A lock at or past
the stale threshold is assumed abandoned: the holding process is
terminated and the lock is reclaimed. Locks held by this process are
removed at interpreter exit.
"""

import atexit
from contextlib import contextmanager
from dataclasses import dataclass
import json
import os
from pathlib import Path
import subprocess
import threading
import time
from typing import Callable, Optional
import weakref

from taskpilot import config
from taskpilot.errors import LockBusyError
from taskpilot.logger import info, warn, error


@dataclass
class LockAcquisition:
    """Outcome of an acquire attempt."""
    acquired: bool
    reason: Optional[str] = None
    age_seconds: Optional[int] = None
    holder: Optional[str] = None
    reclaimed: bool = False

    def __bool__(self) -> bool:
        return self.acquired


def kill_processes(pattern: str) -> None:
    """Terminate processes whose command line matches the pattern."""
    try:
        subprocess.run(["pkill", "-f", pattern], check=False, capture_output=True, timeout=10)
        info(f"Terminated processes matching '{pattern}'")
    except (OSError, subprocess.TimeoutExpired) as e:
        warn("Process termination failed", pattern=pattern, error=str(e))


# Guards whose locks are released at interpreter exit
_live_guards = weakref.WeakSet()


class ResourceGuard:
    """
    File-backed exclusive lock for one named resource.

    Safe across threads of one process (internal lock) and across
    processes (exclusive create for claims, atomic replace for reclaims).
    """

    def __init__(
        self,
        resource: str,
        lock_dir: str = None,
        stale_seconds: int = None,
        terminator: Callable[[], None] = None,
        clock: Callable[[], float] = time.time,
        process_pattern: str = None,
    ):
        self.resource = resource
        self.lock_path = Path(lock_dir or config.LOCK_DIR) / f".{resource}_lock.json"
        self.stale_seconds = stale_seconds if stale_seconds is not None else config.LOCK_STALE_SECONDS
        pattern = process_pattern or config.BROWSER_PROCESS_PATTERN
        self.terminator = terminator or (lambda: kill_processes(pattern))
        self.clock = clock

        self._lock = threading.Lock()
        self._held: set[str] = set()
        _live_guards.add(self)

    # ── Lock record ────────────────────────────────────────────────

    def _read(self) -> Optional[dict]:
        try:
            record = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            # Unreadable record: treat as abandoned
            warn("Corrupt lock record, treating as stale", resource=self.resource, error=str(e))
            return {"label": "unknown", "startedAtMs": 0}
        if not isinstance(record, dict):
            return {"label": "unknown", "startedAtMs": 0}
        return record

    def _record(self, label: str, now: float) -> str:
        return json.dumps({"label": label, "startedAtMs": int(now * 1000)}, indent=2)

    def _create(self, label: str, now: float) -> bool:
        """Claim an absent lock. False if someone else created it first."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self._record(label, now))
        return True

    def _replace(self, label: str, now: float) -> None:
        tmp = self.lock_path.with_name(f"{self.lock_path.name}.{os.getpid()}.tmp")
        tmp.write_text(self._record(label, now), encoding="utf-8")
        os.replace(tmp, self.lock_path)

    def _age_seconds(self, record: dict, now: float) -> float:
        return now - int(record.get("startedAtMs", 0)) / 1000

    # ── Public API ─────────────────────────────────────────────────

    def acquire(self, label: str) -> LockAcquisition:
        """
        Try to take the lock for `label`.

        Absent: claimed. Fresh: refused with the holder's label and age.
        Stale: the holder is terminated and the lock reclaimed.
        """
        with self._lock:
            now = self.clock()
            record = self._read()

            if record is None:
                if self._create(label, now):
                    self._held.add(label)
                    info(f"Lock acquired: {self.resource}", label=label)
                    return LockAcquisition(acquired=True)
                record = self._read() or {"label": "unknown", "startedAtMs": int(now * 1000)}

            holder = str(record.get("label", "unknown"))
            age = self._age_seconds(record, now)

            if age < self.stale_seconds:
                return LockAcquisition(
                    acquired=False,
                    reason=f"{self.resource} busy with '{holder}'",
                    age_seconds=int(age),
                    holder=holder,
                )

            warn(f"Stale lock on {self.resource} ({int(age)}s old), reclaiming",
                 previous_holder=holder, label=label)
            self.terminator()
            self._replace(label, now)
            self._held.discard(holder)
            self._held.add(label)
            return LockAcquisition(acquired=True, holder=holder, age_seconds=int(age), reclaimed=True)

    def acquire_or_raise(self, label: str) -> LockAcquisition:
        result = self.acquire(label)
        if not result.acquired:
            raise LockBusyError(self.resource, result.holder, result.age_seconds)
        return result

    @contextmanager
    def hold(self, label: str):
        """Hold the lock for the duration of a block. Raises LockBusyError if busy."""
        self.acquire_or_raise(label)
        try:
            yield self
        finally:
            self.release(label)

    def release(self, label: str) -> bool:
        """Remove the lock if `label` holds it. Returns whether it was removed."""
        with self._lock:
            record = self._read()
            if record is None:
                self._held.discard(label)
                return False

            holder = record.get("label")
            if holder != label:
                warn(f"Refusing to release {self.resource} lock held by another label",
                     label=label, holder=holder)
                return False

            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
            self._held.discard(label)
            info(f"Lock released: {self.resource}", label=label)
            return True

    def check_for_periodic_caller(self, label: str) -> bool:
        """
        Proceed/back-off decision for scheduled callers.

        Takes the lock like acquire() but never raises. The caller must
        release(label) when done.
        """
        try:
            result = self.acquire(label)
        except OSError as e:
            error(f"Lock check failed for {self.resource}", err=e)
            return False
        if not result.acquired:
            info(f"{self.resource} busy, skipping cycle", label=label, holder=result.holder,
                 age_seconds=result.age_seconds)
        return result.acquired

    def status(self) -> dict:
        with self._lock:
            record = self._read()
            now = self.clock()
        if record is None:
            return {"resource": self.resource, "locked": False, "holder": None, "age_seconds": None, "stale": False}

        age = self._age_seconds(record, now)
        stale = age >= self.stale_seconds
        return {
            "resource": self.resource,
            "locked": not stale,
            "holder": record.get("label"),
            "age_seconds": int(age),
            "stale": stale,
        }

    def _release_all(self) -> None:
        for label in list(self._held):
            try:
                self.release(label)
            except OSError as e:
                warn("Lock release at exit failed", resource=self.resource, label=label, error=str(e))


def _release_live_guards() -> None:
    for guard in list(_live_guards):
        guard._release_all()


atexit.register(_release_live_guards)
