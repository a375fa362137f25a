"""
=============================================================================
WORKER THREAD POOL
=============================================================================

Every listener hands its accepted connections to one shared pool. A worker
owns a connection until the client goes away or keep-alive expires, so the
pool size bounds how many clients are served at the same time.

    ┌────────────┐  accept  ┌───────────────────────┐  get()  ┌──────────┐
    │ listener A │ ───────► │                       │ ──────► │ Worker-0 │
    ├────────────┤          │  queue.Queue[Task]    │         ├──────────┤
    │ listener B │ ───────► │  (bounded)            │ ──────► │ Worker-1 │
    ├────────────┤          │                       │         ├──────────┤
    │ listener C │ ───────► │                       │ ──────► │ ...      │
    └────────────┘          └───────────────────────┘         └──────────┘

=============================================================================
SIZING
=============================================================================

min_workers threads start with the pool. When every worker is busy and
tasks are waiting, one more is added, up to max_workers. Workers never
shrink back; a static file server does not live long enough for that to
matter.

Shutdown puts one None ("poison pill") per worker on the queue. Workers are
daemon threads, so a client holding a keep-alive connection open cannot
keep the process alive past shutdown.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


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
    kwargs: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """Pulls tasks off the shared queue until it gets a poison pill."""

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int, poll_interval: float = 1.0):
        super().__init__(name=f"Worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.poll_interval = poll_interval

        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0
        self._stop_event = threading.Event()

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._stop_event.is_set():
            try:
                task = self.task_queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped ({self.tasks_completed} done, {self.tasks_failed} failed)")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        waited = time.monotonic() - task.submitted_at
        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
        except Exception as e:
            # A failing connection must not take the worker down with it
            self.tasks_failed += 1
            logger.exception(f"Worker {self.worker_id} task failed (queued {waited:.3f}s): {e}")
        finally:
            self.state = WorkerState.IDLE

    def stop(self):
        self._stop_event.set()


class ThreadPool:
    """
    Fixed-floor, bounded-ceiling pool of daemon worker threads.

        pool = ThreadPool(min_workers=4, max_workers=32)
        pool.start()
        pool.submit(handle_connection, args=(conn,))
        ...
        pool.shutdown(wait=False)
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 32, queue_size: int = 256):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(f"Invalid pool size: min={min_workers}, max={max_workers}")

        self.min_workers = min_workers
        self.max_workers = max_workers

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def start(self):
        with self._lock:
            if self._started:
                return
            logger.debug(f"Starting thread pool with {self.min_workers} workers")
            for _ in range(self.min_workers):
                self._spawn()
            self._started = True

    def _spawn(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(self._task_queue, worker_id=len(self._workers))
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = (), kwargs: Optional[dict] = None,
               block: bool = True, queue_timeout: Optional[float] = None) -> bool:
        """
        Queue a call for a worker.

        Returns:
            False if the queue stayed full (only with block=False or a
            queue_timeout); True otherwise.

        Raises:
            RuntimeError: The pool is not running.
        """
        if not self._started or self._closed:
            raise RuntimeError("Thread pool is not running")

        try:
            self._task_queue.put(Task(func, args, kwargs or {}), block=block, timeout=queue_timeout)
        except queue.Full:
            return False

        self._maybe_grow()
        return True

    def _maybe_grow(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            if self._task_queue.qsize() == 0:
                return
            if all(w.state == WorkerState.BUSY for w in self._workers):
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._spawn()

    def shutdown(self, wait: bool = True, timeout: float = 2.0):
        """
        Stop all workers.

        Args:
            wait: Join each worker (up to `timeout` seconds apiece).
        """
        with self._lock:
            if not self._started or self._closed:
                return
            self._closed = True
            workers = list(self._workers)

        for worker in workers:
            worker.stop()
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                pass  # the stop event reaches it on the next poll

        if wait:
            for worker in workers:
                if worker is not threading.current_thread():
                    worker.join(timeout=timeout)

        logger.debug("Thread pool stopped")

    @property
    def size(self) -> int:
        return len(self._workers)

