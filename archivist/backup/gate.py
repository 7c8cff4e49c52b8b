"""
Process-wide execution gate for transfer pipelines.

At most one task is "running" at any instant across the whole process.
Tasks requesting a start while another runs wait in a FIFO queue; a task
already waiting is not queued twice. When the running task completes or
fails, the head of the queue is promoted to running and every promotion
listener is told about it so the pipeline for that task can be started.
"""

import logging
import threading
from collections import deque
from typing import Callable, Dict, List, Optional

from archivist.models import TaskStatus


logger = logging.getLogger(__name__)

PromotionListener = Callable[[str], None]


class TaskExecutionGate:
    """Single global execution slot with a FIFO wait queue."""

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[str, TaskStatus] = {}
        self._queue = deque()
        self._listeners: List[PromotionListener] = []

    def request_start(self, task_name: str) -> bool:
        """
        Ask for the execution slot.

        Returns:
            True if the caller may run the task now; False if the task was
            queued (or already running or waiting)
        """
        with self._lock:
            current = self._statuses.get(task_name, TaskStatus.NOT_RUNNING)

            if current == TaskStatus.RUNNING:
                logger.info(f"Task {task_name} is already running, ignoring start request")
                return False

            if self._running_task() is None:
                self._statuses[task_name] = TaskStatus.RUNNING
                logger.info(f"Task {task_name} acquired the execution slot")
                return True

            if task_name not in self._queue:
                self._queue.append(task_name)
                self._statuses[task_name] = TaskStatus.WAITING
                logger.info(f"Task {task_name} queued (position {len(self._queue)})")

            return False

    def complete(self, task_name: str) -> Optional[str]:
        """
        Release the slot held by task_name and promote the next waiting task.

        A task that does not hold the slot cannot release it; the call is
        ignored.

        Returns:
            Name of the promoted task, if any
        """
        with self._lock:
            if self._statuses.get(task_name) != TaskStatus.RUNNING:
                logger.warning(f"Task {task_name} does not hold the execution slot, ignoring release")
                return None

            self._statuses[task_name] = TaskStatus.NOT_RUNNING
            promoted = None

            if self._queue:
                promoted = self._queue.popleft()
                self._statuses[promoted] = TaskStatus.RUNNING
                logger.info(f"Task {promoted} promoted from the wait queue")

            listeners = list(self._listeners)

        if promoted is not None and not self._notify(listeners, promoted):
            logger.error(f"Releasing slot of promoted task {promoted}: a promotion listener failed")
            self.fail(promoted)
            return None

        return promoted

    def fail(self, task_name: str) -> Optional[str]:
        """Same as complete(); a failed run frees the slot the same way."""
        return self.complete(task_name)

    def status_of(self, task_name: str) -> TaskStatus:
        with self._lock:
            return self._statuses.get(task_name, TaskStatus.NOT_RUNNING)

    def all_statuses(self) -> Dict[str, TaskStatus]:
        with self._lock:
            return dict(self._statuses)

    def waiting(self) -> List[str]:
        with self._lock:
            return list(self._queue)

    def add_promotion_listener(self, listener: PromotionListener):
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_promotion_listener(self, listener: PromotionListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def reset(self):
        """Forget all state and listeners. Only meant for tests."""
        with self._lock:
            self._statuses.clear()
            self._queue.clear()
            self._listeners.clear()

    def _running_task(self) -> Optional[str]:
        for name, status in self._statuses.items():
            if status == TaskStatus.RUNNING:
                return name
        return None

    @staticmethod
    def _notify(listeners: List[PromotionListener], task_name: str) -> bool:
        delivered = True
        for listener in listeners:
            try:
                listener(task_name)
            except Exception as e:
                logger.error(f"Promotion listener failed for task {task_name}: {e}")
                delivered = False
        return delivered


# Global instance owned by the process
execution_gate = TaskExecutionGate()
