"""
Fan-out/fan-in work queue.

Tasks added with ``add`` are spread over N worker threads; every worker
result is folded by a single merger thread into one accumulator, which
``wait`` returns once all input has been processed::

    add -> [ in ] -> work_fn (xN) -> [ out ] -> merge_fn -> [ sum ] -> wait
"""

import os
import queue
import threading
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar

from .exceptions import PreconditionFailedError
from .locks import WaitGroup

if TYPE_CHECKING:
    from .rotating_logger import Logger

T = TypeVar("T")
R = TypeVar("R")
A = TypeVar("A")

_CLOSED = object()


class WorkQueue(Generic[T, R, A]):
    """
    Parallel map plus sequential fold.

    Results reach the merger in completion order, not input order, so the
    merge function must be associative (and commutative too unless a single
    worker is used) for the result to be deterministic.
    """

    def __init__(self, buffer_size: int = 0, logger: Optional["Logger"] = None) -> None:
        """
        Initialize the queue.

        Args:
            buffer_size: Capacity of the in and out channels. Python queues
                have no rendezvous mode, so values of 0 or below mean a
                capacity of one.
            logger: Optional logger for worker and merger failures
        """
        capacity = buffer_size if buffer_size > 0 else 1
        self._in: queue.Queue = queue.Queue(maxsize=capacity)
        self._out: queue.Queue = queue.Queue(maxsize=capacity)
        self._sum: queue.Queue = queue.Queue(maxsize=1)
        self._logger = logger

        self._workers: list[threading.Thread] = []
        self._work_wait = WaitGroup()
        self._merger: Optional[threading.Thread] = None
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()
        self._lock = threading.Lock()
        self._waited = False

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def set_worker(self, work_fn: Callable[[T], R], number: int = 0) -> "WorkQueue[T, R, A]":
        """
        Start worker threads.

        Args:
            work_fn: Called once per task; its return value goes to the merger
            number: Number of workers; 0 or below means one per CPU

        Returns:
            The queue, for chaining
        """
        if number <= 0:
            number = os.cpu_count() or 1

        with self._lock:
            self._ensure_open()
            for _ in range(number):
                self._work_wait.add(1)
                worker = threading.Thread(
                    target=self._work,
                    args=(work_fn,),
                    name=f"work-queue-worker-{len(self._workers)}",
                    daemon=True,
                )
                self._workers.append(worker)
                worker.start()
        return self

    def set_merger(self, merge_fn: Callable[[A, R], A], seed: A) -> "WorkQueue[T, R, A]":
        """
        Start the merger thread.

        Args:
            merge_fn: Folds one worker result into the accumulator
            seed: Initial accumulator value

        Returns:
            The queue, for chaining

        Raises:
            PreconditionFailedError: If a merger is already running
        """
        with self._lock:
            self._ensure_open()
            if self._merger is not None:
                raise PreconditionFailedError(
                    code="merger_exists",
                    message="merger is already set",
                )
            self._merger = threading.Thread(
                target=self._merge,
                args=(merge_fn, seed),
                name="work-queue-merger",
                daemon=True,
            )
            self._merger.start()
        return self

    def add(self, task: T) -> None:
        """
        Push a task; blocks while the in channel is full.

        Raises:
            PreconditionFailedError: If wait() has already been called
        """
        if self._waited:
            raise PreconditionFailedError(
                code="queue_closed",
                message="add on a queue that is already waited",
            )
        self._in.put(task)

    def wait(self) -> A:
        """
        Close the input, let the workers drain it, and return the fold.

        Raises:
            PreconditionFailedError: If called twice, or if no worker or no
                merger was set
            Exception: The first exception raised by work_fn or merge_fn
        """
        with self._lock:
            self._ensure_open()
            if not self._workers or self._merger is None:
                raise PreconditionFailedError(
                    code="queue_incomplete",
                    message="wait needs at least one worker and a merger",
                )
            self._waited = True

        for _ in self._workers:
            self._in.put(_CLOSED)
        self._work_wait.wait()
        self._out.put(_CLOSED)

        result = self._sum.get()
        self._merger.join()

        if self._errors:
            raise self._errors[0]
        return result

    def _ensure_open(self) -> None:
        if self._waited:
            raise PreconditionFailedError(
                code="queue_closed",
                message="queue is already waited",
            )

    def _record_error(self, where: str, error: BaseException) -> None:
        with self._errors_lock:
            self._errors.append(error)
        if self._logger is not None:
            self._logger.error("work queue %s crashed: %r", where, error)

    def _work(self, work_fn: Callable[[T], R]) -> None:
        failed = False
        try:
            while True:
                task = self._in.get()
                if task is _CLOSED:
                    return
                if failed:
                    continue
                try:
                    result = work_fn(task)
                except Exception as e:
                    failed = True
                    self._record_error("worker", e)
                    continue
                self._out.put(result)
        finally:
            self._work_wait.done()

    def _merge(self, merge_fn: Callable[[A, R], A], accumulator: A) -> None:
        failed = False
        while True:
            item: Any = self._out.get()
            if item is _CLOSED:
                break
            if failed:
                continue
            try:
                accumulator = merge_fn(accumulator, item)
            except Exception as e:
                failed = True
                self._record_error("merger", e)
        self._sum.put(accumulator)
