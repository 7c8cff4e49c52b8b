"""
Transfer executor - orchestrates the complete archive transfer workflow.

Workflow:
1. Ask the execution gate for the slot (queued runs stop here)
2. Validate source, destination and encryption settings
3. Create compressed archive in a temporary workspace
4. Encrypt it (if enabled)
5. Upload to the destination backend
6. Prune old archives per the retention count
7. Remove the temporary workspace
8. Report success/failure to the execution gate
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from archivist.models import (
    SUPPORTED_ALGORITHMS, Backend, LocalBackend, Task, TaskSet, TransferResult
)
from .cipher import encrypt_file
from .compression import create_archive, generate_archive_filename
from .errors import ConfigError, EncryptionConfigError, SourceMissingError
from .gate import TaskExecutionGate, execution_gate
from .retention import RetentionManager
from .storage import write_archive


logger = logging.getLogger(__name__)

# Pipeline states
IDLE = 'idle'
ARCHIVING = 'archiving'
ENCRYPTING = 'encrypting'
UPLOADING = 'uploading'
PRUNING = 'pruning'
DONE = 'done'
FAILED = 'failed'


class TransferExecutor:
    """
    Runs one archive transfer for a task.
    """

    def __init__(
        self,
        task: Task,
        source: Optional[Backend],
        destination: Optional[Backend],
        gate: Optional[TaskExecutionGate] = None,
        temp_root: Optional[str] = None,
        admitted: bool = False
    ):
        """
        Initialize transfer executor.

        Args:
            task: Task to execute
            source: Source backend record (None if it could not be resolved)
            destination: Destination backend record (None if it could not be resolved)
            gate: Execution gate (default: the process-wide gate)
            temp_root: Directory temporary workspaces are created in
            admitted: True when the gate has already granted this task the
                slot (promotion from the wait queue)
        """
        self.task = task
        self.source = source
        self.destination = destination
        self.gate = gate or execution_gate
        self.temp_root = temp_root
        self.admitted = admitted
        self.state = IDLE
        self.result = None
        self.temp_dir = None
        self.logs = []
        self._last_decile = {}

    def execute(self) -> TransferResult:
        """
        Execute the transfer.

        Returns:
            TransferResult with status 'success', or 'queued' when another
            task holds the execution slot

        Raises:
            ArchivistError: Any pipeline failure, after the gate has been told
        """
        self.result = TransferResult(
            task_name=self.task.name,
            started_at=datetime.now(timezone.utc),
            encrypted=self.task.encrypted,
            logs=self.logs
        )

        if not self.admitted and not self.gate.request_start(self.task.name):
            self.result.status = 'queued'
            self._log(f"Task {self.task.name} is waiting for the execution slot")
            return self.result

        self._log(f"Starting transfer task: {self.task.name}")

        try:
            self._execute_workflow()
        except Exception as e:
            self.state = FAILED
            self.result.status = 'failed'
            self.result.completed_at = datetime.now(timezone.utc)
            self.result.error_message = str(e)
            self._log(f"Transfer failed: {e}")
            logger.exception(f"Task {self.task.name} failed")
            self.gate.fail(self.task.name)
            raise

        self.state = DONE
        self.result.status = 'success'
        self.result.completed_at = datetime.now(timezone.utc)
        self._log("Transfer completed successfully")
        self.gate.complete(self.task.name)
        return self.result

    def _execute_workflow(self):
        """Execute the main transfer workflow steps."""
        self._preflight()

        now = datetime.now(timezone.utc)
        zip_name = generate_archive_filename(self.task.archive_prefix, encrypted=False, now=now)
        final_name = generate_archive_filename(self.task.archive_prefix, encrypted=self.task.encrypted, now=now)

        with self._workspace() as workdir:
            # Step 1: Create archive
            self.state = ARCHIVING
            self._log(f"Creating archive from {self.source.path}")
            archive_path = os.path.join(workdir, zip_name)
            size = create_archive(self.source.path, archive_path, self._archive_progress)
            self._log(f"Archive created: {zip_name} ({size / 1024 / 1024:.2f} MB)")

            # Step 2: Encrypt (if configured)
            final_path = archive_path
            if self.task.encrypted:
                self.state = ENCRYPTING
                final_path = os.path.join(workdir, final_name)
                self._log("Encrypting archive")
                size = encrypt_file(archive_path, final_path, self.task.encryption.password)
                os.remove(archive_path)
                self._log(f"Encrypted archive: {final_name} ({size} bytes)")

            self.result.archive_name = final_name
            self.result.file_size_bytes = size

            # Step 3: Upload
            self.state = UPLOADING
            self._log(f"Uploading to {self.task.destination} ({self.destination.type})")
            with open(final_path, 'rb') as stream:
                key = write_archive(
                    self.destination,
                    final_name,
                    stream,
                    lambda sent: self._report_progress('Upload', sent, size)
                )
            self.result.storage_key = key
            self._log(f"Uploaded: {key}")

        # Step 4: Prune old archives
        self.state = PRUNING
        retention = RetentionManager()
        prune = retention.enforce_task_policy(self.task, self.destination)
        self.result.pruned = prune.deleted
        self.result.prune_failures = prune.failed
        for line in retention.logs:
            self.logs.append(line)

    def _preflight(self):
        """
        Validate the run before any archive or network work starts.

        Raises:
            ConfigError: If a backend is missing or the source is not local
            SourceMissingError: If the source directory does not exist
            EncryptionConfigError: If encryption is enabled without a password
        """
        if self.destination is None:
            raise ConfigError(f"Destination backend {self.task.destination} not found")

        if self.source is None:
            raise ConfigError(f"Source backend {self.task.source} not found")

        if not isinstance(self.source, LocalBackend):
            raise ConfigError(
                f"Transfer from {self.source.type} to {self.destination.type} is not supported"
            )

        if not os.path.isdir(self.source.path):
            raise SourceMissingError(f"Source directory {self.source.path} does not exist")

        encryption = self.task.encryption
        if encryption is not None and encryption.enabled:
            if not encryption.password:
                raise EncryptionConfigError(f"Encryption is enabled for {self.task.name} but no password is set")
            if encryption.algorithm not in SUPPORTED_ALGORITHMS:
                raise EncryptionConfigError(f"Unsupported encryption algorithm: {encryption.algorithm}")

    @contextmanager
    def _workspace(self):
        """Temporary directory that is removed on every exit path."""
        if self.temp_root:
            os.makedirs(self.temp_root, exist_ok=True)

        self.temp_dir = tempfile.mkdtemp(prefix='archivist_', dir=self.temp_root)
        self._log(f"Temporary directory: {self.temp_dir}")
        try:
            yield self.temp_dir
        finally:
            self._cleanup()

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
                self._log("Cleaned up temporary directory")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}")

    def _archive_progress(self, processed: int, total: int):
        self._report_progress('Archiving', processed, total)

    def _report_progress(self, stage: str, done: int, total: int):
        if total <= 0:
            return
        decile = min(10, done * 10 // total)
        if decile > self._last_decile.get(stage, -1):
            self._last_decile[stage] = decile
            logger.info(f"{stage} progress: {decile * 10}% ({done}/{total} bytes)")

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def run_task(
    task_name: str,
    task_set: TaskSet,
    admitted: bool = False,
    gate: Optional[TaskExecutionGate] = None,
    temp_root: Optional[str] = None
) -> TransferResult:
    """
    Execute a task by name.

    Args:
        task_name: Name of the task to execute
        task_set: Current task and backend definitions
        admitted: True when the gate already promoted this task to running
        gate: Execution gate (default: the process-wide gate)
        temp_root: Directory temporary workspaces are created in

    Returns:
        TransferResult with execution results

    Raises:
        ConfigError: If the task is not defined
        ArchivistError: If the transfer fails
    """
    task = task_set.get_task(task_name)

    if task is None:
        if admitted:
            (gate or execution_gate).fail(task_name)
        raise ConfigError(f"Task not found: {task_name}")

    executor = TransferExecutor(
        task,
        task_set.get_backend(task.source),
        task_set.get_backend(task.destination),
        gate=gate,
        temp_root=temp_root,
        admitted=admitted
    )
    return executor.execute()
