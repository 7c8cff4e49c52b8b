"""
Unit tests for the execution gate (archivist/backup/gate.py).
"""

import threading
from unittest.mock import MagicMock

from archivist.models import TaskStatus


class TestRequestStart:
    """Test slot acquisition and queueing."""

    def test_first_task_runs(self, gate):
        assert gate.request_start('a') is True
        assert gate.status_of('a') == TaskStatus.RUNNING

    def test_second_task_waits(self, gate):
        gate.request_start('a')

        assert gate.request_start('b') is False
        assert gate.status_of('b') == TaskStatus.WAITING
        assert gate.waiting() == ['b']

    def test_waiting_task_not_queued_twice(self, gate):
        gate.request_start('a')
        gate.request_start('b')
        gate.request_start('b')

        assert gate.waiting() == ['b']

    def test_running_task_request_is_noop(self, gate):
        gate.request_start('a')

        assert gate.request_start('a') is False
        assert gate.waiting() == []
        assert gate.status_of('a') == TaskStatus.RUNNING

    def test_unknown_task_is_not_running(self, gate):
        assert gate.status_of('never-seen') == TaskStatus.NOT_RUNNING

    def test_concurrent_requests_admit_one(self, gate):
        results = []
        barrier = threading.Barrier(8)

        def worker(name):
            barrier.wait()
            results.append(gate.request_start(name))

        threads = [threading.Thread(target=worker, args=(f"t{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert len(gate.waiting()) == 7


class TestCompletion:
    """Test release and promotion."""

    def test_complete_promotes_head_in_order(self, gate):
        gate.request_start('a')
        gate.request_start('b')
        gate.request_start('c')

        assert gate.complete('a') == 'b'
        assert gate.status_of('a') == TaskStatus.NOT_RUNNING
        assert gate.status_of('b') == TaskStatus.RUNNING
        assert gate.status_of('c') == TaskStatus.WAITING

        assert gate.fail('b') == 'c'
        assert gate.complete('c') is None
        assert gate.waiting() == []

    def test_slot_free_after_complete(self, gate):
        gate.request_start('a')
        gate.complete('a')

        assert gate.request_start('b') is True

    def test_release_by_waiting_task_is_ignored(self, gate):
        gate.request_start('a')
        gate.request_start('b')
        gate.request_start('c')

        assert gate.fail('c') is None
        assert gate.status_of('a') == TaskStatus.RUNNING
        assert gate.status_of('b') == TaskStatus.WAITING
        assert gate.status_of('c') == TaskStatus.WAITING
        assert gate.waiting() == ['b', 'c']

    def test_release_by_unknown_task_is_ignored(self, gate):
        listener = MagicMock()
        gate.add_promotion_listener(listener)
        gate.request_start('a')
        gate.request_start('b')

        assert gate.complete('ghost') is None
        assert gate.all_statuses() == {'a': TaskStatus.RUNNING, 'b': TaskStatus.WAITING}
        listener.assert_not_called()

    def test_listener_called_with_promoted_task(self, gate):
        listener = MagicMock()
        gate.add_promotion_listener(listener)
        gate.request_start('a')
        gate.request_start('b')

        gate.complete('a')

        listener.assert_called_once_with('b')

    def test_listener_not_called_without_queue(self, gate):
        listener = MagicMock()
        gate.add_promotion_listener(listener)
        gate.request_start('a')

        gate.complete('a')

        listener.assert_not_called()

    def test_listener_may_reenter_gate(self, gate):
        """Listeners run outside the lock."""
        seen = []
        gate.add_promotion_listener(lambda name: seen.append(gate.status_of(name)))
        gate.request_start('a')
        gate.request_start('b')

        gate.complete('a')

        assert seen == [TaskStatus.RUNNING]

    def test_failing_listener_releases_promoted_task(self, gate):
        gate.add_promotion_listener(MagicMock(side_effect=RuntimeError('scheduler down')))
        gate.request_start('a')
        gate.request_start('b')

        assert gate.complete('a') is None
        assert gate.status_of('b') == TaskStatus.NOT_RUNNING
        assert gate.request_start('c') is True

    def test_remove_listener(self, gate):
        listener = MagicMock()
        gate.add_promotion_listener(listener)
        gate.remove_promotion_listener(listener)
        gate.request_start('a')
        gate.request_start('b')

        gate.complete('a')

        listener.assert_not_called()

    def test_all_statuses_and_reset(self, gate):
        gate.request_start('a')
        gate.request_start('b')

        assert gate.all_statuses() == {'a': TaskStatus.RUNNING, 'b': TaskStatus.WAITING}

        gate.reset()

        assert gate.all_statuses() == {}
        assert gate.waiting() == []
