from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union


DEFAULT_ARCHIVE_PREFIX = 'archive'
SUPPORTED_ALGORITHMS = ('aes-256-cbc',)


class TaskStatus(str, Enum):
    """Execution status of a task as tracked by the execution gate"""
    NOT_RUNNING = 'not running'
    WAITING = 'waiting'
    RUNNING = 'running'


@dataclass(frozen=True)
class EncryptionConfig:
    """Password-based archive encryption settings"""
    enabled: bool = False
    password: Optional[str] = None
    algorithm: str = 'aes-256-cbc'

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.password)

    def to_dict(self) -> dict:
        return {
            'enabled': self.enabled,
            'algorithm': self.algorithm,
            'has_password': bool(self.password),
        }


@dataclass(frozen=True)
class LocalBackend:
    """Directory on the local filesystem"""
    path: str
    type: str = field(default='local', init=False)

    def to_dict(self, redact: bool = True) -> dict:
        return {'type': self.type, 'path': self.path}

    def __repr__(self):
        return f'<LocalBackend path={self.path}>'


@dataclass(frozen=True)
class S3Backend:
    """Bucket on AWS S3 or an S3-compatible object store"""
    bucket: str
    region: str
    access_key_id: str
    secret_access_key: str
    endpoint: Optional[str] = None
    s3_prefix: Optional[str] = None
    force_path_style: Optional[bool] = None
    ssl_enabled: bool = True
    type: str = field(default='s3', init=False)

    def to_dict(self, redact: bool = True) -> dict:
        data = {
            'type': self.type,
            'bucket': self.bucket,
            'region': self.region,
            'endpoint': self.endpoint,
            's3_prefix': self.s3_prefix,
            'force_path_style': self.force_path_style,
            'ssl_enabled': self.ssl_enabled,
        }
        if not redact:
            data['access_key_id'] = self.access_key_id
            data['secret_access_key'] = self.secret_access_key
        return data

    def __repr__(self):
        return f'<S3Backend bucket={self.bucket} region={self.region}>'


Backend = Union[LocalBackend, S3Backend]


@dataclass(frozen=True)
class Task:
    """Scheduled archive transfer definition"""
    name: str
    source: str
    destination: str
    schedule: Optional[str] = None
    retention: int = 0
    prefix: Optional[str] = None
    encryption: Optional[EncryptionConfig] = None

    @property
    def archive_prefix(self) -> str:
        return self.prefix or DEFAULT_ARCHIVE_PREFIX

    @property
    def encrypted(self) -> bool:
        return self.encryption is not None and self.encryption.active

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'source': self.source,
            'destination': self.destination,
            'schedule': self.schedule,
            'retention': self.retention,
            'prefix': self.archive_prefix,
            'encryption': self.encryption.to_dict() if self.encryption else None,
        }

    def __repr__(self):
        return f'<Task {self.name} {self.source}->{self.destination}>'


@dataclass(frozen=True)
class TaskSet:
    """Validated snapshot of every backend and task definition"""
    backends: Dict[str, Backend] = field(default_factory=dict)
    tasks: Dict[str, Task] = field(default_factory=dict)

    def get_task(self, name: str) -> Optional[Task]:
        return self.tasks.get(name)

    def get_backend(self, name: str) -> Optional[Backend]:
        return self.backends.get(name)


@dataclass(frozen=True)
class Archive:
    """Archive discovered by listing a backend"""
    name: str
    path: str
    size: int
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'path': self.path,
            'size': self.size,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class TransferResult:
    """Outcome of one pipeline run"""
    task_name: str
    status: str = 'running'  # running, queued, success, failed
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archive_name: Optional[str] = None
    storage_key: Optional[str] = None
    file_size_bytes: Optional[int] = None
    encrypted: bool = False
    pruned: List[str] = field(default_factory=list)
    prune_failures: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'task_name': self.task_name,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'archive_name': self.archive_name,
            'storage_key': self.storage_key,
            'file_size_bytes': self.file_size_bytes,
            'encrypted': self.encrypted,
            'pruned': list(self.pruned),
            'prune_failures': list(self.prune_failures),
            'error_message': self.error_message,
        }

    def __repr__(self):
        return f'<TransferResult task={self.task_name} status={self.status}>'
