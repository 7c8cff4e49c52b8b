"""
Archive transfer pipeline for Archivist.

This module handles the core transfer functionality including:
- Compression of a source directory into a ZIP archive
- Password-based encryption (OpenSSL salted format)
- Storage (local filesystem and S3-compatible)
- Retention pruning
- The process-wide execution gate
- Execution orchestration
"""

from .executor import TransferExecutor, run_task
from .compression import create_archive, generate_archive_filename
from .cipher import StreamEncryptor, StreamDecryptor, encrypt_file, decrypt_file
from .storage import S3Storage, LocalStorage, list_archives, write_archive, delete_archive
from .retention import RetentionManager, prune_archives
from .gate import TaskExecutionGate, execution_gate

__all__ = [
    'TransferExecutor',
    'run_task',
    'create_archive',
    'generate_archive_filename',
    'StreamEncryptor',
    'StreamDecryptor',
    'encrypt_file',
    'decrypt_file',
    'S3Storage',
    'LocalStorage',
    'list_archives',
    'write_archive',
    'delete_archive',
    'RetentionManager',
    'prune_archives',
    'TaskExecutionGate',
    'execution_gate'
]
