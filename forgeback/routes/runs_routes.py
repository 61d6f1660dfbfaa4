"""
Backup run routes - read-only view of run history plus a manual trigger.
"""

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from forgeback import db
from forgeback.config import SOURCE_KINDS
from forgeback.models import BackupRun, SourceOutcome


bp = Blueprint('runs', __name__, url_prefix='/api/runs')

RUN_STATUSES = ('success', 'failed')


def _isoformat(value):
    return value.isoformat() if value else None


def _outcome_dict(outcome: SourceOutcome) -> dict:
    return {
        'kind': outcome.kind,
        'outcome': outcome.outcome,
        'repositories': outcome.repositories,
        'error_message': outcome.error_message
    }


def _run_summary(run: BackupRun) -> dict:
    duration_seconds = None
    if run.completed_at:
        duration_seconds = int((run.completed_at - run.started_at).total_seconds())

    return {
        'id': run.id,
        'status': run.status,
        'started_at': _isoformat(run.started_at),
        'completed_at': _isoformat(run.completed_at),
        'duration_seconds': duration_seconds,
        'outcomes': [_outcome_dict(outcome) for outcome in run.outcomes]
    }


@bp.route('', methods=['GET'])
def list_runs():
    """
    Get backup runs with filtering and pagination.

    Query params:
        - status: Filter by status (success/failed)
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with run records and metadata
    """
    status_filter = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    # Enforce limits
    limit = max(1, min(limit, 200))
    if offset < 0:
        offset = 0

    query = BackupRun.query

    if status_filter:
        if status_filter not in RUN_STATUSES:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(BackupRun.status == status_filter)

    total_count = query.count()

    runs = query.order_by(
        BackupRun.started_at.desc(), BackupRun.id.desc()
    ).limit(limit).offset(offset).all()

    return jsonify({
        'records': [_run_summary(run) for run in runs],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<int:run_id>', methods=['GET'])
def get_run_detail(run_id):
    """
    Get a run with its per-kind outcomes and logs.

    Args:
        run_id: BackupRun ID
    """
    run = db.get_or_404(BackupRun, run_id)

    data = _run_summary(run)
    data['logs'] = run.logs
    return jsonify(data)


@bp.route('/latest', methods=['GET'])
def latest_outcomes():
    """
    Get the most recent outcome of every source kind.

    Returns:
        JSON mapping each kind to its latest outcome (null if never run)
    """
    latest_ids = db.select(func.max(SourceOutcome.id)).group_by(SourceOutcome.kind)

    outcomes = SourceOutcome.query.filter(SourceOutcome.id.in_(latest_ids)).all()
    by_kind = {outcome.kind: outcome for outcome in outcomes}

    result = {}
    for kind in SOURCE_KINDS:
        outcome = by_kind.get(kind)
        if outcome is None:
            result[kind] = None
            continue
        data = _outcome_dict(outcome)
        data['run_id'] = outcome.run_id
        data['started_at'] = _isoformat(outcome.run.started_at)
        result[kind] = data

    return jsonify(result)


@bp.route('/trigger', methods=['POST'])
def trigger_run():
    """
    Queue a backup run on the scheduler.

    Returns:
        202 with the scheduler job ID, or 503 if the scheduler is not running
    """
    from forgeback.scheduler import is_scheduler_running, trigger_run_now

    if not is_scheduler_running():
        return jsonify({'error': 'Scheduler is not running'}), 503

    job_id = trigger_run_now()
    return jsonify({'message': 'Backup run queued', 'job_id': job_id}), 202
