"""
Unit tests for retention policy management (archivist/backup/retention.py).

Tests keep-count pruning and RetentionManager.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from archivist.backup.errors import StorageError
from archivist.backup.retention import PruneResult, RetentionManager, prune_archives
from archivist.models import Archive, LocalBackend, Task, TaskSet


def _archives(count):
    """Archive listing sorted newest first: a0 is the newest."""
    base = datetime(2024, 1, 15, tzinfo=timezone.utc)
    return [
        Archive(name=f"a{i}.zip", path=f"/dest/a{i}.zip", size=1, created_at=base - timedelta(days=i))
        for i in range(count)
    ]


class TestPruneArchives:
    """Test prune_archives."""

    def test_keeps_newest(self):
        delete = MagicMock()

        result = prune_archives(_archives(5), 2, delete)

        assert result.deleted == ['/dest/a2.zip', '/dest/a3.zip', '/dest/a4.zip']
        assert result.ok
        assert delete.call_count == 3

    def test_zero_keeps_everything(self):
        delete = MagicMock()

        result = prune_archives(_archives(10), 0, delete)

        assert result == PruneResult()
        delete.assert_not_called()

    def test_fewer_than_keep(self):
        delete = MagicMock()

        result = prune_archives(_archives(2), 5, delete)

        assert result.deleted == []
        delete.assert_not_called()

    def test_failures_are_isolated(self):
        def delete(key):
            if key == '/dest/a2.zip':
                raise StorageError('permission denied')

        result = prune_archives(_archives(4), 1, delete)

        assert result.deleted == ['/dest/a1.zip', '/dest/a3.zip']
        assert result.failed == ['/dest/a2.zip: permission denied']
        assert not result.ok


class TestRetentionManager:
    """Test RetentionManager against a local destination."""

    def _populate(self, directory, prefix, count):
        for i in range(count):
            path = directory / f"{prefix}-2024-01-{i + 1:02d}T00-00-00-000Z.zip"
            path.write_bytes(b'x')
            mtime = 1_700_000_000 + i * 3600
            os.utime(path, (mtime, mtime))

    def test_retention_manager_initialization(self):
        manager = RetentionManager()

        assert manager.logs == []

    def test_enforce_task_policy(self, dest_dir):
        self._populate(dest_dir, 'daily', 4)
        (dest_dir / 'other-2024-01-01T00-00-00-000Z.zip').write_bytes(b'x')
        task = Task(name='daily', source='src', destination='dst', retention=2, prefix='daily')

        result = RetentionManager().enforce_task_policy(task, LocalBackend(path=str(dest_dir)))

        assert len(result.deleted) == 2
        assert sorted(os.listdir(dest_dir)) == [
            'daily-2024-01-03T00-00-00-000Z.zip',
            'daily-2024-01-04T00-00-00-000Z.zip',
            'other-2024-01-01T00-00-00-000Z.zip',
        ]

    def test_enforce_task_policy_unlimited(self, dest_dir):
        self._populate(dest_dir, 'daily', 3)
        task = Task(name='daily', source='src', destination='dst', retention=0, prefix='daily')

        manager = RetentionManager()
        result = manager.enforce_task_policy(task, LocalBackend(path=str(dest_dir)))

        assert result.deleted == []
        assert len(os.listdir(dest_dir)) == 3
        assert any('No retention limit' in line for line in manager.logs)

    def test_enforce_all_policies(self, dest_dir):
        self._populate(dest_dir, 'daily', 3)
        task_set = TaskSet(
            backends={'dst': LocalBackend(path=str(dest_dir))},
            tasks={
                'daily': Task(name='daily', source='dst', destination='dst', retention=1, prefix='daily'),
                'orphan': Task(name='orphan', source='dst', destination='missing', retention=1),
            }
        )

        summary = RetentionManager().enforce_all_policies(task_set)

        assert summary['tasks_processed'] == 1
        assert summary['deleted'] == 2
        assert len(summary['errors']) == 1
        assert 'orphan' in summary['errors'][0]
        assert summary['logs']

    @patch('archivist.backup.retention.list_archives')
    def test_enforce_all_policies_listing_failure(self, mock_list):
        mock_list.side_effect = StorageError('bucket unreachable')
        task_set = TaskSet(
            backends={'dst': LocalBackend(path='/nowhere')},
            tasks={'daily': Task(name='daily', source='dst', destination='dst', retention=3)}
        )

        summary = RetentionManager().enforce_all_policies(task_set)

        assert summary['tasks_processed'] == 0
        assert 'bucket unreachable' in summary['errors'][0]

    @patch('archivist.backup.retention.delete_archive')
    def test_enforce_all_policies_reports_delete_failures(self, mock_delete, dest_dir):
        self._populate(dest_dir, 'daily', 3)
        mock_delete.side_effect = StorageError('read-only')
        task_set = TaskSet(
            backends={'dst': LocalBackend(path=str(dest_dir))},
            tasks={'daily': Task(name='daily', source='dst', destination='dst', retention=1, prefix='daily')}
        )

        summary = RetentionManager().enforce_all_policies(task_set)

        assert summary['tasks_processed'] == 1
        assert summary['deleted'] == 0
        assert len(summary['errors']) == 2
        assert all(error.startswith('daily: ') for error in summary['errors'])
