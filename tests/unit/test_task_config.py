"""
Unit tests for task/backend definition loading (archivist/task_config.py).
"""

import json

import pytest
import yaml

from archivist.backup.errors import ConfigError
from archivist.models import LocalBackend, S3Backend
from archivist.task_config import (
    TaskRegistry, load_task_set, parse_backend, parse_task, parse_task_set
)


RAW = {
    'backends': {
        'docs': {'type': 'local', 'path': '/srv/docs'},
        'offsite': {
            'type': 's3',
            'bucket': 'my-backups',
            'region': 'eu-central-1',
            'accessKeyId': 'AKIA',
            'secretAccessKey': 'SECRET',
            's3Prefix': 'nightly',
            'endpoint': 'https://minio.local:9000',
            'forcePathStyle': 'true',
            'sslEnabled': False,
        },
        'ftp': {'type': 'ftp', 'host': 'example.com'},
    },
    'tasks': {
        'documents': {
            'source': 'docs',
            'destination': 'offsite',
            'schedule': '0 3 * * *',
            'retention': 7,
            'prefix': 'docs',
            'encryption': {'enabled': True, 'key': 'secret123'},
        },
        'legacy': {'source': 'docs', 'destination': 'ftp'},
        'broken': {'source': 'docs'},
    },
}


class TestParseBackend:
    """Test backend definitions."""

    def test_local(self):
        assert parse_backend('docs', {'type': 'local', 'path': '/srv'}) == LocalBackend(path='/srv')

    def test_s3_camel_case_keys(self):
        backend = parse_backend('offsite', RAW['backends']['offsite'])

        assert isinstance(backend, S3Backend)
        assert backend.access_key_id == 'AKIA'
        assert backend.secret_access_key == 'SECRET'
        assert backend.s3_prefix == 'nightly'
        assert backend.force_path_style is True
        assert backend.ssl_enabled is False

    def test_s3_defaults(self):
        backend = parse_backend('b', {
            'type': 's3', 'bucket': 'b', 'region': 'us-east-1',
            'access_key_id': 'a', 'secret_access_key': 's',
        })

        assert backend.force_path_style is None
        assert backend.ssl_enabled is True
        assert backend.endpoint is None

    def test_missing_field(self):
        with pytest.raises(ConfigError, match='bucket'):
            parse_backend('b', {'type': 's3', 'region': 'r', 'accessKeyId': 'a', 'secretAccessKey': 's'})

    def test_unsupported_type(self):
        with pytest.raises(ConfigError, match='Unsupported backend type'):
            parse_backend('ftp', {'type': 'ftp'})


class TestParseTask:
    """Test task definitions."""

    def test_full_task(self):
        task = parse_task('documents', RAW['tasks']['documents'])

        assert task.schedule == '0 3 * * *'
        assert task.retention == 7
        assert task.archive_prefix == 'docs'
        assert task.encrypted is True
        assert task.encryption.password == 'secret123'
        assert task.encryption.algorithm == 'aes-256-cbc'

    def test_defaults(self):
        task = parse_task('t', {'source': 'a', 'destination': 'b'})

        assert task.retention == 0
        assert task.schedule is None
        assert task.archive_prefix == 'archive'
        assert task.encrypted is False

    def test_disabled_encryption_is_inactive(self):
        task = parse_task('t', {
            'source': 'a', 'destination': 'b',
            'encryption': {'enabled': False, 'key': 'pw'},
        })

        assert task.encrypted is False

    @pytest.mark.parametrize('retention', [-1, 'seven', True, 1.5])
    def test_invalid_retention(self, retention):
        with pytest.raises(ConfigError, match='retention'):
            parse_task('t', {'source': 'a', 'destination': 'b', 'retention': retention})


class TestParseTaskSet:
    """Test whole-document validation."""

    def test_drops_invalid_entries(self):
        task_set = parse_task_set(RAW)

        assert sorted(task_set.backends) == ['docs', 'offsite']
        assert sorted(task_set.tasks) == ['documents']

    def test_missing_sections(self):
        with pytest.raises(ConfigError):
            parse_task_set({'backends': {}})

        with pytest.raises(ConfigError):
            parse_task_set(None)

    def test_empty_sections(self):
        task_set = parse_task_set({'backends': None, 'tasks': None})

        assert task_set.tasks == {}


class TestLoadTaskSet:
    """Test reading definitions files."""

    def test_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(RAW))

        assert sorted(load_task_set(str(path)).tasks) == ['documents']

    def test_json(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps(RAW))

        assert sorted(load_task_set(str(path)).tasks) == ['documents']

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='Failed to read'):
            load_task_set(str(tmp_path / 'absent.yaml'))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('backends: [unclosed')

        with pytest.raises(ConfigError, match='Failed to parse'):
            load_task_set(str(path))


class TestTaskRegistry:
    """Test reload semantics."""

    def test_reload_replaces_snapshot(self, config_file):
        registry = TaskRegistry(str(config_file))

        task_set = registry.reload()

        assert registry.task_set is task_set
        assert sorted(task_set.tasks) == ['daily']

    def test_failed_reload_keeps_previous(self, config_file):
        registry = TaskRegistry(str(config_file))
        previous = registry.reload()
        config_file.write_text('not: [valid')

        with pytest.raises(ConfigError):
            registry.reload()

        assert registry.task_set is previous

    def test_reload_without_path(self):
        with pytest.raises(ConfigError, match='No configuration path'):
            TaskRegistry().reload()
