"""
Task routes - task/backend listings, archive listings, manual runs and status.
"""

import logging

from flask import Blueprint, current_app, jsonify

from archivist.backup.errors import ArchivistError
from archivist.backup.gate import execution_gate
from archivist.backup.storage import list_archives
from archivist.scheduler import is_scheduler_running, sync_task_jobs, trigger_task_now


logger = logging.getLogger(__name__)

bp = Blueprint('tasks', __name__, url_prefix='/api')


def _registry():
    return current_app.extensions['task_registry']


@bp.route('/tasks', methods=['GET'])
def list_tasks():
    """
    Get all task definitions.

    Returns:
        JSON object keyed by task name
    """
    tasks = _registry().task_set.tasks
    return jsonify({name: task.to_dict() for name, task in tasks.items()})


@bp.route('/backends', methods=['GET'])
def list_backends():
    """
    Get all backend definitions with credentials removed.

    Returns:
        JSON object keyed by backend name
    """
    backends = _registry().task_set.backends
    return jsonify({name: backend.to_dict(redact=True) for name, backend in backends.items()})


@bp.route('/tasks/status', methods=['GET'])
def get_all_task_statuses():
    """
    Get the execution status of every task the gate has seen.

    Returns:
        JSON array of {taskName, status}
    """
    statuses = execution_gate.all_statuses()
    return jsonify([
        {'taskName': name, 'status': status.value}
        for name, status in statuses.items()
    ])


@bp.route('/tasks/<task_name>/status', methods=['GET'])
def get_task_status(task_name):
    """
    Get the execution status of one task.

    Unknown tasks report "not running".
    """
    status = execution_gate.status_of(task_name)
    return jsonify({'taskName': task_name, 'status': status.value})


@bp.route('/tasks/<task_name>/archives', methods=['GET'])
def get_task_archives(task_name):
    """
    List the archives a task has produced on its destination, newest first.

    Args:
        task_name: Task name

    Returns:
        JSON array of archives
    """
    task_set = _registry().task_set
    task = task_set.get_task(task_name)

    if task is None:
        return jsonify({'error': f"Task {task_name} not found"}), 404

    backend = task_set.get_backend(task.destination)
    if backend is None:
        return jsonify({'error': f"Destination backend {task.destination} not found"}), 404

    try:
        archives = list_archives(backend, task.archive_prefix)
    except ArchivistError as e:
        logger.error(f"Failed to list archives for {task_name}: {e}")
        return jsonify({'error': f"Failed to list archives: {e}"}), 500

    return jsonify([archive.to_dict() for archive in archives])


@bp.route('/tasks/<task_name>/execute', methods=['POST'])
def execute_task(task_name):
    """
    Manually trigger a task. The run starts in the background.

    Args:
        task_name: Task name

    Returns:
        JSON with success message
    """
    try:
        trigger_task_now(task_name)
    except ValueError as e:
        return jsonify({'error': str(e)}), 404
    except RuntimeError as e:
        return jsonify({'error': f"Failed to start task: {e}"}), 503

    return jsonify({'message': f"Task {task_name} execution started"})


@bp.route('/config/reload', methods=['POST'])
def reload_config():
    """
    Reload task and backend definitions and resync the scheduler.

    A failed reload keeps the previous definitions.
    """
    try:
        task_set = _registry().reload()
    except ArchivistError as e:
        return jsonify({'error': f"Failed to reload configuration: {e}"}), 500

    if is_scheduler_running():
        sync_task_jobs()

    return jsonify({
        'message': 'Configuration reloaded successfully',
        'tasks': sorted(task_set.tasks),
        'backends': sorted(task_set.backends)
    })
