"""
Async Log Writer - Write-Behind Text Logging for the Capture Path

Decouples log-file appends from the receive loop using a dedicated writer
thread. The receive loop and the statistics reporter only enqueue tasks;
the writer thread performs the file I/O.

Design:
    - Producers queue LogTask objects (fast, never touch the disk)
    - One writer thread executes tasks strictly in FIFO order
    - A STOP task is the poison pill: the worker exits when it dequeues
      it, after everything queued before it has been written
    - Write failures are logged and counted; the worker keeps going
"""

import threading
import queue
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class LogIOError(OSError):
    """A queued log write failed."""


class LogTaskKind(str, Enum):
    """What the worker should do with a dequeued task."""
    WRITE = "write"
    STOP = "stop"


@dataclass(frozen=True)
class LogTask:
    """A unit of work for the writer thread."""
    kind: LogTaskKind
    action: Optional[Callable[[], None]] = None
    description: str = ""

    @property
    def proceed(self) -> bool:
        """False for the poison pill."""
        return self.kind is LogTaskKind.WRITE

    @classmethod
    def write(cls, action: Callable[[], None], description: str = "") -> 'LogTask':
        return cls(LogTaskKind.WRITE, action, description)

    @classmethod
    def append_line(cls, path: Path, line: str) -> 'LogTask':
        """Task that appends one line of text to a file."""
        path = Path(path)
        return cls(LogTaskKind.WRITE, lambda: append_line(path, line), str(path))

    @classmethod
    def stop(cls) -> 'LogTask':
        return cls(LogTaskKind.STOP, None, "stop")


def append_line(path: Path, line: str):
    """Append a single line to a text file, creating it if needed."""
    try:
        with open(path, 'a', encoding='utf-8') as f:
            f.write(line)
            f.write('\n')
    except OSError as e:
        raise LogIOError(e.errno, f"Cannot append to {path}: {e.strerror}") from e


class WriteBehindLogger:
    """
    Ordered write-behind sink with a single dedicated I/O thread.

    Usage:
        writer = WriteBehindLogger()
        writer.start()

        # Non-blocking for an unbounded queue
        writer.write_line(Path('Packets.log'), line)

        # Drains what is queued, then the worker exits
        writer.stop()
    """

    def __init__(self, max_queue_size: int = 0):
        """
        Initialize writer.

        Args:
            max_queue_size: Maximum pending tasks, 0 for unbounded. When
                bounded, submit() blocks while the queue is full.
        """
        self.max_queue_size = max_queue_size
        self.task_queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self.worker: Optional[threading.Thread] = None
        self.running = False

        # Serializes submit() against stop() so nothing follows the pill
        self._submit_lock = threading.Lock()

        # Statistics
        self.writes_queued = 0
        self.writes_completed = 0
        self.writes_failed = 0
        self.writes_rejected = 0
        self._stats_lock = threading.Lock()

    def start(self, timeout: float = 10.0):
        """
        Start the writer thread (again, after a previous stop).

        A worker left draining by a timed-out stop() is waited for first,
        so its pending writes land before any new ones.

        Args:
            timeout: Maximum wait for a previous worker to finish

        Raises:
            RuntimeError: If the previous worker is still draining
        """
        previous = self.worker
        if previous is not None and not self.running and previous.is_alive():
            previous.join(timeout=timeout)

        with self._submit_lock:
            if self.running:
                return
            if self.worker is not None and self.worker.is_alive():
                raise RuntimeError(f"Previous LogWriter still draining "
                                   f"({self.task_queue.qsize()} pending)")
            self.task_queue = queue.Queue(maxsize=self.max_queue_size)
            self.running = True
            self.worker = threading.Thread(target=self.run_worker, name="LogWriter", daemon=True)
            self.worker.start()
        logger.info("WriteBehindLogger started")

    def submit(self, task: LogTask) -> bool:
        """
        Queue a task for the writer thread.

        Returns:
            True if queued, False if the writer is not running
        """
        if not task.proceed:
            raise ValueError("Use stop() to end the writer thread")

        with self._submit_lock:
            if not self.running:
                with self._stats_lock:
                    self.writes_rejected += 1
                logger.debug(f"WriteBehindLogger not running, dropped write to {task.description}")
                return False
            self.task_queue.put(task)

        with self._stats_lock:
            self.writes_queued += 1
        return True

    def write_line(self, path: Path, line: str) -> bool:
        """Queue an append of one line to path."""
        return self.submit(LogTask.append_line(path, line))

    def stop(self, timeout: float = 10.0):
        """
        Enqueue the poison pill and wait for the worker to drain.

        Args:
            timeout: Maximum time to wait for pending writes
        """
        with self._submit_lock:
            if not self.running:
                return
            self.running = False
            self.task_queue.put(LogTask.stop())

        worker = self.worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.warning(f"WriteBehindLogger still draining after {timeout}s "
                               f"({self.task_queue.qsize()} pending)")
                return

        logger.info(f"WriteBehindLogger stopped cleanly. Completed {self.writes_completed} writes"
                    f" ({self.writes_failed} failed)")

    def run_worker(self):
        """Worker thread main loop: execute tasks until the poison pill."""
        task_queue = self.task_queue
        while True:
            task = task_queue.get()
            try:
                if not task.proceed:
                    logger.debug("Write task killed")
                    break
                self._execute(task)
            finally:
                task_queue.task_done()

    def _execute(self, task: LogTask):
        """Run one write task; failures stay inside the worker."""
        try:
            task.action()
            with self._stats_lock:
                self.writes_completed += 1
        except Exception as e:
            with self._stats_lock:
                self.writes_failed += 1
            logger.error(f"Log write failed for {task.description or 'task'}: {e}")

    def get_stats(self) -> dict:
        """Get writer statistics."""
        with self._stats_lock:
            return {
                'writes_queued': self.writes_queued,
                'writes_completed': self.writes_completed,
                'writes_failed': self.writes_failed,
                'writes_rejected': self.writes_rejected,
                'writes_pending': self.task_queue.qsize(),
                'running': self.running,
            }

    @property
    def queue_depth(self) -> int:
        """Current queue depth."""
        return self.task_queue.qsize()
