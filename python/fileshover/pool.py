import logging
import queue
import threading
from collections.abc import Callable
from typing import TypeAlias

logger = logging.getLogger(__name__)

Task: TypeAlias = Callable[..., object]

_STOP = object()


class PoolClosed(Exception):
    """Raised by submit once the pool has been shut down."""


class WorkerPool:
    """
    ### Description
    A fixed number of worker threads fed from one FIFO queue. At most `size`
    tasks run at the same time; the rest wait in the queue. With a bounded
    queue `submit` blocks until there is room, so nothing is ever dropped.

    A task that raises is logged and forgotten. The worker that ran it keeps
    going and other tasks never notice.

    ### Methods
    - **submit**: Queues a callable and its arguments.
    - **join**: Blocks until every queued task has finished.
    - **shutdown**: Runs what is already queued, then stops the workers.
    """

    def __init__(self, size: int, queue_size: int = 0, name: str = "worker"):
        if size < 1:
            raise ValueError("a pool needs at least one worker")

        self.size = size
        self._tasks: queue.Queue = queue.Queue(maxsize=queue_size)
        self._submit_lock = threading.Lock()
        self._active_lock = threading.Lock()
        self._active = 0
        self._closed = False

        self._threads = [
            threading.Thread(target=self._work, name=f"{name}-{i}", daemon=True)
            for i in range(size)
        ]
        for t in self._threads:
            t.start()

    @property
    def active(self) -> int:
        """Number of tasks executing right now."""
        with self._active_lock:
            return self._active

    @property
    def pending(self) -> int:
        return self._tasks.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, task: Task, *args):
        with self._submit_lock:
            if self._closed:
                raise PoolClosed("pool has been shut down")

            self._tasks.put((task, args))

    def join(self):
        self._tasks.join()

    def shutdown(self, wait: bool = True):
        with self._submit_lock:
            if not self._closed:
                self._closed = True
                # Queued after every real task, so those still run first.
                for _ in self._threads:
                    self._tasks.put(_STOP)

        if wait:
            for t in self._threads:
                t.join()

    def _work(self):
        while True:
            item = self._tasks.get()
            try:
                if item is _STOP:
                    return

                task, args = item
                with self._active_lock:
                    self._active += 1
                try:
                    task(*args)
                except Exception:
                    logger.exception("Task %r crashed.", task)
                finally:
                    with self._active_lock:
                        self._active -= 1
            finally:
                self._tasks.task_done()

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *_):
        self.shutdown()
