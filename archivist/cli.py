"""
Flask CLI commands.

    flask --app archivist run-task documents
    flask --app archivist list-archives documents
    flask --app archivist decrypt backup.zip.crypt backup.zip
"""

import click
from flask import current_app
from flask.cli import with_appcontext

from archivist.backup.cipher import decrypt_file
from archivist.backup.errors import ArchivistError
from archivist.backup.executor import run_task
from archivist.backup.storage import list_archives


def _registry():
    return current_app.extensions['task_registry']


@click.command('run-task')
@click.argument('task_name')
@with_appcontext
def run_task_command(task_name):
    """Run a task synchronously in this process."""
    try:
        result = run_task(
            task_name,
            _registry().task_set,
            temp_root=current_app.config.get('TEMP_DIR')
        )
    except ArchivistError as e:
        raise click.ClickException(str(e))

    if result.status == 'queued':
        click.echo(f"Task {task_name} is waiting for another task to finish")
        return

    click.echo(f"Uploaded {result.storage_key} ({result.file_size_bytes} bytes)")
    for key in result.pruned:
        click.echo(f"Pruned {key}")
    for failure in result.prune_failures:
        click.echo(f"Failed to prune {failure}", err=True)


@click.command('list-archives')
@click.argument('task_name')
@with_appcontext
def list_archives_command(task_name):
    """List a task's archives on its destination, newest first."""
    task_set = _registry().task_set
    task = task_set.get_task(task_name)
    if task is None:
        raise click.ClickException(f"Task not found: {task_name}")

    backend = task_set.get_backend(task.destination)
    if backend is None:
        raise click.ClickException(f"Destination backend {task.destination} not found")

    try:
        archives = list_archives(backend, task.archive_prefix)
    except ArchivistError as e:
        raise click.ClickException(str(e))

    for archive in archives:
        click.echo(f"{archive.created_at.isoformat()}  {archive.size:>12}  {archive.path}")


@click.command('decrypt')
@click.argument('source', type=click.Path(exists=True, dir_okay=False))
@click.argument('destination', type=click.Path(dir_okay=False))
@click.option('--password', prompt=True, hide_input=True, help='Password the archive was encrypted with')
def decrypt_command(source, destination, password):
    """Decrypt an encrypted archive back into a plain ZIP file."""
    try:
        size = decrypt_file(source, destination, password)
    except ArchivistError as e:
        raise click.ClickException(str(e))

    click.echo(f"Decrypted {source} -> {destination} ({size} bytes)")


def register_commands(app):
    app.cli.add_command(run_task_command)
    app.cli.add_command(list_archives_command)
    app.cli.add_command(decrypt_command)
