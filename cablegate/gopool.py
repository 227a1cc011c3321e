"""A bounded pool of reusable worker threads."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

# How many tasks a worker performs before it is replaced by a fresh thread.
WORKER_RESPAWN_THRESHOLD = 1 << 16
MAX_INITIAL_WORKERS = 1024

_log = logging.getLogger("cablegate.gopool")

Task = Callable[[], object]

_initialized_pools: list[GoPool] = []
_pools_lock = threading.Lock()


class ScheduleTimeoutError(TimeoutError):
    """No worker or queue slot became free within the timeout."""

    def __init__(self) -> None:
        super().__init__("schedule error: timed out")


def all_pools() -> list[GoPool]:
    """All pools created so far."""
    with _pools_lock:
        return list(_initialized_pools)


class GoPool:
    """Runs tasks on at most size threads, with a queue half that size.

    A fifth of the workers (at least one, at most 1024) start at once;
    more are spawned when the queue is full.
    """

    def __init__(self, name: str, size: int) -> None:
        if size <= 0:
            raise ValueError("pool size must be positive")

        self._name = name
        self._size = size
        self._queue_size = max(size // 2, 1)
        self._queue: deque[Task] = deque()
        self._workers = 0
        self._spawned = 0
        self._cond = threading.Condition()

        spawn = min(max(size // 5, 1), MAX_INITIAL_WORKERS)
        with self._cond:
            for _ in range(spawn):
                self._spawn(None)

        with _pools_lock:
            _initialized_pools.append(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return self._size

    def schedule(self, task: Task) -> None:
        """Run task on a worker, waiting as long as needed for room."""
        self._schedule(task, None)

    def schedule_timeout(self, timeout: float, task: Task) -> None:
        """Run task on a worker; raise ScheduleTimeoutError after timeout seconds."""
        self._schedule(task, timeout)

    def _schedule(self, task: Task, timeout: float | None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if len(self._queue) < self._queue_size:
                    self._queue.append(task)
                    self._cond.notify_all()
                    return
                if self._workers < self._size:
                    self._spawn(task)
                    return
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ScheduleTimeoutError()
                self._cond.wait(remaining)

    def _spawn(self, task: Task | None) -> None:
        # Called with the condition held.
        self._workers += 1
        self._spawned += 1
        thread = threading.Thread(
            target=self._worker,
            args=(task,),
            name=f"{self._name}-worker-{self._spawned}",
            daemon=True,
        )
        thread.start()

    def _run(self, task: Task) -> None:
        try:
            task()
        except Exception:
            _log.exception("Task failed in pool %s", self._name)

    def _worker(self, task: Task | None) -> None:
        counter = 1
        try:
            if task is not None:
                self._run(task)
            while True:
                with self._cond:
                    while not self._queue:
                        self._cond.wait()
                    task = self._queue.popleft()
                    self._cond.notify_all()
                self._run(task)
                counter += 1
                if counter >= WORKER_RESPAWN_THRESHOLD:
                    return
        finally:
            with self._cond:
                self._workers -= 1
                self._cond.notify_all()