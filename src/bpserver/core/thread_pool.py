"""
=============================================================================
WORKER POOL
=============================================================================

A bounded pool of worker threads shared by BOTH listeners. Each accepted
connection becomes one task; one worker owns that connection until it
closes, so the stages for one request always run in order on one thread.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   plain accept loop ──┐                                              │
    │                       ├──► submit() ──► [ bounded task queue ]      │
    │   TLS accept loop ────┘        │                 │                   │
    │                                │ full?           │ get()             │
    │                                ▼                 ▼                   │
    │                        503 + close      ┌──────────┐ ┌──────────┐   │
    │                                         │ Worker 1 │ │ Worker 2 │…  │
    │                                         └──────────┘ └──────────┘   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Workers start at min_workers and grow toward max_workers while every
worker is busy and tasks are waiting.

=============================================================================
SHUTDOWN
=============================================================================

    1. refuse new tasks
    2. wait for queued AND running tasks, at most `timeout` seconds
    3. poison pill (None) per worker, join

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)


class Worker(threading.Thread):
    """
    Pulls tasks off the shared queue until it receives a poison pill.

    An exception in a task is logged and counted; the worker keeps going.
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        idle_timeout: float = 60.0
    ):
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout

        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.time() - start_time
            logger.debug(f"Worker {self.worker_id} completed task in {elapsed:.3f}s")
            self.tasks_completed += 1

        except Exception as e:
            elapsed = time.time() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class WorkerPool:
    """
    Bounded worker pool.

        pool = WorkerPool(min_workers=4, max_workers=16, max_queue=100)
        pool.start()

        if not pool.submit(handle_connection, args=(conn,), block=False):
            ...  # queue full, answer 503

        pool.shutdown(timeout=10.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        max_queue: int = 100,
        idle_timeout: float = 60.0
    ):
        """
        Args:
            min_workers: Workers created at start() and kept running.
            max_workers: Upper bound reached under load.
            max_queue: Connections allowed to wait for a worker.
            idle_timeout: How often an idle worker rechecks for shutdown.
        """
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(
                f"Invalid worker bounds: min={min_workers}, max={max_workers}"
            )

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue = max_queue
        self.idle_timeout = idle_timeout

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue(maxsize=max_queue)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()

        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        if self._started:
            return

        logger.info(f"Starting worker pool with {self.min_workers} workers")

        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()

        self._started = True

    def _add_worker(self) -> Worker:
        # Caller holds self._lock.
        worker = Worker(
            task_queue=self._task_queue,
            worker_id=self._next_worker_id,
            idle_timeout=self.idle_timeout
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        block: bool = True
    ) -> bool:
        """
        Queue a task.

        With block=False a full queue is reported at once instead of waiting.

        Returns:
            True if queued, False if the queue was full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._started:
            raise RuntimeError("Worker pool not started")

        if self._shutdown:
            raise RuntimeError("Worker pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})

        try:
            self._task_queue.put(task, block=block)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return

            busy_count = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if busy_count == len(self._workers) and self._task_queue.qsize() > 0:
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the pool, draining in-flight work first.

        Args:
            timeout: Seconds to wait for queued and running tasks.
                     None waits indefinitely.

        Returns:
            True if every task finished inside the timeout.
        """
        if not self._started or self._shutdown:
            return True

        logger.info("Shutting down worker pool...")
        self._shutdown = True

        drained = self._wait_for_tasks(timeout)
        if not drained:
            logger.warning(
                f"Worker pool drain exceeded {timeout}s, "
                f"{self._task_queue.unfinished_tasks} tasks abandoned"
            )

        with self._lock:
            workers = list(self._workers)

        for _ in workers:
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                break

        for worker in workers:
            worker.shutdown()
            worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()

        logger.info("Worker pool shutdown complete")
        return drained

    def _wait_for_tasks(self, timeout: Optional[float]) -> bool:
        deadline = None if timeout is None else time.time() + timeout

        with self._task_queue.all_tasks_done:
            while self._task_queue.unfinished_tasks:
                if deadline is None:
                    self._task_queue.all_tasks_done.wait()
                    continue

                remaining = deadline - time.time()
                if remaining <= 0:
                    return False
                self._task_queue.all_tasks_done.wait(remaining)

        return True

    @property
    def stats(self) -> dict:
        """Worker and task counts, logged when the server stops."""
        with self._lock:
            workers = list(self._workers)

        return {
            "workers": {
                "total": len(workers),
                "busy": sum(1 for w in workers if w.state == WorkerState.BUSY),
                "idle": sum(1 for w in workers if w.state == WorkerState.IDLE),
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in workers),
                "failed": sum(w.tasks_failed for w in workers),
            },
        }
