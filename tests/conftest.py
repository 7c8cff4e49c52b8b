"""
Shared pytest fixtures for Archivist tests.

This module provides fixtures for:
- Flask app and test client
- Task/backend definitions on local directories
- A fresh execution gate per test
- Mock fixtures for external services (S3)
- Temporary source files
"""

import os
import shutil
import tempfile
from unittest.mock import MagicMock, patch

import pytest
import boto3
import yaml
from moto import mock_aws

from archivist import create_app
from archivist import scheduler as scheduler_module
from archivist.backup.gate import TaskExecutionGate, execution_gate
from archivist.models import EncryptionConfig, LocalBackend, S3Backend, Task, TaskSet


@pytest.fixture(autouse=True)
def reset_execution_gate():
    """The process-wide gate must not leak state between tests."""
    execution_gate.reset()
    yield
    execution_gate.reset()


@pytest.fixture
def gate():
    """A private execution gate."""
    return TaskExecutionGate()


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source directory.

    Creates:
    - report.txt
    - data.csv
    - nested/ignored.txt (subdirectories are not archived)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'report.txt').write_text('Quarterly report\n' * 50)
    (source / 'data.csv').write_text('id,value\n' + ''.join(f'{i},{i * i}\n' for i in range(200)))

    nested = source / 'nested'
    nested.mkdir()
    (nested / 'ignored.txt').write_text('Not part of the archive')

    return source


@pytest.fixture
def dest_dir(tmp_path):
    dest = tmp_path / 'dest'
    dest.mkdir()
    return dest


@pytest.fixture
def work_dir(tmp_path):
    work = tmp_path / 'work'
    work.mkdir()
    return work


@pytest.fixture
def local_task_set(source_dir, dest_dir):
    """
    Task set with one local->local task and one encrypted local->local task.
    """
    backends = {
        'src': LocalBackend(path=str(source_dir)),
        'dst': LocalBackend(path=str(dest_dir)),
    }
    tasks = {
        'daily': Task(
            name='daily',
            source='src',
            destination='dst',
            schedule='0 3 * * *',
            retention=2,
            prefix='daily'
        ),
        'secure': Task(
            name='secure',
            source='src',
            destination='dst',
            schedule='0 4 * * *',
            retention=0,
            prefix='secure',
            encryption=EncryptionConfig(enabled=True, password='secret123')
        ),
    }
    return TaskSet(backends=backends, tasks=tasks)


@pytest.fixture
def config_file(tmp_path, source_dir, dest_dir):
    """YAML definitions file matching local_task_set."""
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'backends': {
            'src': {'type': 'local', 'path': str(source_dir)},
            'dst': {'type': 'local', 'path': str(dest_dir)},
        },
        'tasks': {
            'daily': {
                'source': 'src',
                'destination': 'dst',
                'schedule': '0 3 * * *',
                'retention': 2,
                'prefix': 'daily',
            },
        },
    }))
    return path


@pytest.fixture(scope='function')
def app(config_file):
    """
    Create Flask app with test configuration.

    The scheduler is not started; tests that need it initialize it themselves.
    """
    temp_dir = tempfile.mkdtemp()

    app = create_app('testing', {
        'CONFIG_PATH': str(config_file),
        'TEMP_DIR': os.path.join(temp_dir, 'temp'),
        'LOG_DIR': os.path.join(temp_dir, 'logs'),
        'SCHEDULER_ENABLED': False,
    })

    yield app

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def s3_backend():
    return S3Backend(
        bucket='test-bucket',
        region='us-east-1',
        access_key_id='test_access_key',
        secret_access_key='test_secret_key',
        s3_prefix='backups'
    )


@pytest.fixture
def mock_scheduler():
    """
    Replace APScheduler's BackgroundScheduler with a MagicMock.

    Yields (mock class, mock instance); the module globals are reset afterwards.
    """
    with patch('archivist.scheduler.BackgroundScheduler') as mock_scheduler_class:
        mock_scheduler = MagicMock()
        mock_scheduler.timezone = 'UTC'
        mock_scheduler.get_jobs.return_value = []
        mock_scheduler_class.return_value = mock_scheduler
        yield mock_scheduler_class, mock_scheduler

    scheduler_module.reset_scheduler()
