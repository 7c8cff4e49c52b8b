"""
Retention policy enforcement for backups.

A task keeps its N most recent archives on the destination backend; older
ones are deleted after each successful run. A retention of 0 keeps
everything.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from archivist.models import Archive, Backend, Task, TaskSet
from .errors import ArchivistError, ConfigError
from .storage import delete_archive, list_archives


logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Archives removed by a pruning pass and the ones that could not be"""
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def prune_archives(archives: List[Archive], keep: int, delete: Callable[[str], None]) -> PruneResult:
    """
    Delete every archive beyond the `keep` newest.

    Each deletion is attempted independently; a failure is recorded and the
    remaining archives are still processed.

    Args:
        archives: Archive listing sorted newest first
        keep: Number of archives to keep (0 = unlimited)
        delete: Callable deleting one archive by storage key

    Returns:
        PruneResult with deleted keys and "key: error" failure strings
    """
    result = PruneResult()

    if keep <= 0:
        return result

    for archive in archives[keep:]:
        try:
            delete(archive.path)
            result.deleted.append(archive.path)
            logger.info(f"Deleted old archive: {archive.path}")
        except Exception as e:
            message = f"{archive.path}: {e}"
            result.failed.append(message)
            logger.error(f"Failed to delete old archive {message}")

    return result


class RetentionManager:
    """
    Applies keep-count retention to a task's destination backend.
    """

    def __init__(self):
        """Initialize retention manager."""
        self.logs = []

    def enforce_task_policy(self, task: Task, backend: Backend) -> PruneResult:
        """
        List a task's archives on its destination and prune the excess.

        Raises:
            StorageError: If listing the backend fails
        """
        if task.retention <= 0:
            self._log(f"No retention limit for {task.name}, keeping all archives")
            return PruneResult()

        archives = list_archives(backend, task.archive_prefix)
        self._log(f"Task {task.name}: {len(archives)} archives found, keeping {task.retention}")

        result = prune_archives(archives, task.retention, lambda key: delete_archive(backend, key))

        self._log(
            f"Task {task.name}: deleted {len(result.deleted)}, "
            f"failed {len(result.failed)}"
        )
        return result

    def enforce_all_policies(self, task_set: TaskSet) -> Dict[str, Any]:
        """
        Enforce retention policies for every task.

        Returns:
            Dict with summary of cleanup operations:
            {
                'tasks_processed': int,
                'deleted': int,
                'errors': List[str],
                'logs': List[str]
            }
        """
        self._log("Starting retention policy enforcement for all tasks")

        summary = {
            'tasks_processed': 0,
            'deleted': 0,
            'errors': []
        }

        for task in task_set.tasks.values():
            try:
                backend = task_set.get_backend(task.destination)
                if backend is None:
                    raise ConfigError(f"Destination backend {task.destination} not found")

                result = self.enforce_task_policy(task, backend)
                summary['tasks_processed'] += 1
                summary['deleted'] += len(result.deleted)
                summary['errors'].extend(f"{task.name}: {failure}" for failure in result.failed)
            except ArchivistError as e:
                error_msg = f"Failed to enforce policy for task {task.name}: {e}"
                self._log(error_msg)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention enforcement complete. "
            f"Tasks: {summary['tasks_processed']}, "
            f"Deleted: {summary['deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str):
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
