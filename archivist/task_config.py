"""
Loading of task and backend definitions.

The definitions file is YAML (or JSON) with two top-level mappings:

    backends:
      local-disk:
        type: local
        path: /srv/backups
      offsite:
        type: s3
        bucket: my-backups
        region: eu-central-1
        accessKeyId: ...
        secretAccessKey: ...
        s3Prefix: nightly          # optional
        endpoint: https://minio:9000   # optional
        forcePathStyle: true       # optional
        sslEnabled: true           # optional

    tasks:
      documents:
        source: local-docs
        destination: offsite
        schedule: "0 3 * * *"
        retention: 7
        prefix: docs
        encryption:
          enabled: true
          key: secret-password
          algorithm: aes-256-cbc

Backends of unsupported types and tasks referencing missing or unsupported
backends are dropped with a warning; the rest of the file still loads.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

import yaml

from archivist.models import Backend, EncryptionConfig, LocalBackend, S3Backend, Task, TaskSet
from archivist.backup.errors import ConfigError


logger = logging.getLogger(__name__)

SUPPORTED_BACKEND_TYPES = ('local', 's3')


def _pick(data: Dict[str, Any], *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _require(data: Dict[str, Any], what: str, *keys):
    value = _pick(data, *keys)
    if value in (None, ''):
        raise ConfigError(f"{what} is missing required field '{keys[0]}'")
    return value


def _as_bool(value, default: Optional[bool]) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def parse_backend(name: str, data: Dict[str, Any]) -> Backend:
    """
    Build a backend record from its raw definition.

    Raises:
        ConfigError: If the type is unsupported or a required field is missing
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Backend {name} must be a mapping")

    backend_type = data.get('type')
    what = f"Backend {name}"

    if backend_type == 'local':
        return LocalBackend(path=str(_require(data, what, 'path')))

    if backend_type == 's3':
        return S3Backend(
            bucket=str(_require(data, what, 'bucket')),
            region=str(_require(data, what, 'region')),
            access_key_id=str(_require(data, what, 'accessKeyId', 'access_key_id')),
            secret_access_key=str(_require(data, what, 'secretAccessKey', 'secret_access_key')),
            endpoint=_pick(data, 'endpoint'),
            s3_prefix=_pick(data, 's3Prefix', 's3_prefix'),
            force_path_style=_as_bool(_pick(data, 'forcePathStyle', 'force_path_style'), None),
            ssl_enabled=_as_bool(_pick(data, 'sslEnabled', 'ssl_enabled'), True)
        )

    raise ConfigError(f"Unsupported backend type: {backend_type} for {name}")


def parse_task(name: str, data: Dict[str, Any]) -> Task:
    """
    Build a task record from its raw definition.

    Raises:
        ConfigError: If a required field is missing or a value is invalid
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Task {name} must be a mapping")

    what = f"Task {name}"

    retention = _pick(data, 'retention', default=0)
    if isinstance(retention, bool) or not isinstance(retention, int) or retention < 0:
        raise ConfigError(f"Task {name} has invalid retention: {retention!r}")

    encryption = None
    raw_encryption = data.get('encryption')
    if raw_encryption:
        if not isinstance(raw_encryption, dict):
            raise ConfigError(f"Task {name} encryption must be a mapping")
        encryption = EncryptionConfig(
            enabled=_as_bool(raw_encryption.get('enabled'), False),
            password=_pick(raw_encryption, 'key', 'password'),
            algorithm=raw_encryption.get('algorithm') or 'aes-256-cbc'
        )

    schedule = _pick(data, 'schedule')

    return Task(
        name=name,
        source=str(_require(data, what, 'source')),
        destination=str(_require(data, what, 'destination')),
        schedule=str(schedule) if schedule is not None else None,
        retention=retention,
        prefix=_pick(data, 'prefix'),
        encryption=encryption
    )


def parse_task_set(raw: Dict[str, Any]) -> TaskSet:
    """
    Validate raw definitions into a TaskSet.

    Raises:
        ConfigError: If the document has no backends or tasks section
    """
    if not isinstance(raw, dict) or 'backends' not in raw or 'tasks' not in raw:
        raise ConfigError("Invalid configuration: missing backends or tasks")

    backends = {}
    for name, data in (raw.get('backends') or {}).items():
        try:
            backends[name] = parse_backend(name, data)
        except ConfigError as e:
            logger.warning(f"Skipping backend {name}: {e}")

    tasks = {}
    for name, data in (raw.get('tasks') or {}).items():
        try:
            task = parse_task(name, data)
        except ConfigError as e:
            logger.warning(f"Skipping task {name}: {e}")
            continue

        missing = [ref for ref in (task.source, task.destination) if ref not in backends]
        if missing:
            logger.warning(f"Skipping task {name}: missing or unsupported backend(s) {', '.join(missing)}")
            continue

        tasks[name] = task

    logger.info(f"Loaded configuration with backends: {sorted(backends)}")
    logger.info(f"Valid tasks: {sorted(tasks)}")

    return TaskSet(backends=backends, tasks=tasks)


def load_task_set(path: str) -> TaskSet:
    """
    Read and validate a definitions file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if os.path.splitext(path)[1].lower() == '.json':
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read configuration {path}: {e}")
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Failed to parse configuration {path}: {e}")

    return parse_task_set(raw)


class TaskRegistry:
    """
    Holds the current TaskSet.

    reload() parses the definitions file first and only then swaps the
    snapshot in, so readers see either the old or the new set, never a mix.
    A failed reload keeps the previous set.
    """

    def __init__(self, path: Optional[str] = None, task_set: Optional[TaskSet] = None):
        self.path = path
        self._lock = threading.Lock()
        self._task_set = task_set or TaskSet()

    @property
    def task_set(self) -> TaskSet:
        with self._lock:
            return self._task_set

    def replace(self, task_set: TaskSet):
        with self._lock:
            self._task_set = task_set

    def reload(self) -> TaskSet:
        """
        Reload definitions from the configured path.

        Raises:
            ConfigError: If no path is configured or the file is invalid
        """
        if not self.path:
            raise ConfigError("No configuration path set")

        task_set = load_task_set(self.path)
        self.replace(task_set)
        return task_set
