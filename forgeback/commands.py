"""
Command line entry points (registered on the Flask CLI as 'flask forgeback ...').
"""

import click
from flask import current_app
from flask.cli import AppGroup

from forgeback.backup.executor import execute_backup_run


backup_cli = AppGroup('forgeback', help='Backup commands.')


@backup_cli.command('run')
def run_command():
    """Run one backup pass over all source kinds."""
    try:
        run = execute_backup_run(current_app.config)
    except ValueError as e:
        raise click.ClickException(str(e))

    for outcome in run.outcomes:
        click.echo(f"{outcome.kind}: {outcome.outcome}")
        if outcome.error_message:
            for line in outcome.error_message.splitlines():
                click.echo(f"  {line}", err=True)

    if run.status != 'success':
        raise SystemExit(1)


@backup_cli.command('history')
@click.option('--limit', default=10, show_default=True, help='Number of runs to show.')
def history_command(limit):
    """Show recent backup runs."""
    from forgeback.models import BackupRun

    runs = BackupRun.query.order_by(BackupRun.started_at.desc(), BackupRun.id.desc()).limit(limit).all()
    if not runs:
        click.echo('No backup runs recorded')
        return

    for run in runs:
        kinds = ', '.join(f"{outcome.kind}={outcome.outcome}" for outcome in run.outcomes)
        click.echo(f"#{run.id} {run.started_at:%Y-%m-%d %H:%M:%S} {run.status} ({kinds})")
