"""
Task routes - View and cancel background backup/restore tasks.
"""

import json
from datetime import datetime

from flask import Blueprint, jsonify, request

from lnbackup import db
from lnbackup.models import TaskHistory
from lnbackup.scheduler import remove_task_job, get_scheduler_diagnostics


bp = Blueprint('tasks', __name__, url_prefix='/api/tasks')

TASK_STATUSES = ['queued', 'running', 'succeeded', 'failed', 'cancelling', 'cancelled']


def serialize_task(record: TaskHistory, include_logs: bool = False) -> dict:
    """
    Format a task record for JSON responses.

    Args:
        record: TaskHistory record
        include_logs: Include the full execution log

    Returns:
        Dict with task fields
    """
    duration_seconds = None
    if record.started_at and record.completed_at:
        duration_seconds = int((record.completed_at - record.started_at).total_seconds())

    data = {
        'id': record.id,
        'name': record.name,
        'payload': json.loads(record.payload) if record.payload else None,
        'status': record.status,
        'created_at': record.created_at.isoformat() if record.created_at else None,
        'started_at': record.started_at.isoformat() if record.started_at else None,
        'completed_at': record.completed_at.isoformat() if record.completed_at else None,
        'duration_seconds': duration_seconds,
        'result_path': record.result_path,
        'file_size_bytes': record.file_size_bytes,
        'file_size_mb': round(record.file_size_bytes / 1024 / 1024, 2) if record.file_size_bytes else None,
        'summary': json.loads(record.summary) if record.summary else None,
        'error_message': record.error_message,
        'has_logs': bool(record.logs)
    }

    if include_logs:
        data['logs'] = record.logs

    return data


@bp.route('/', methods=['GET'])
def list_tasks():
    """
    Get task history with filtering and pagination.

    Query params:
        - status: Filter by status
        - name: Filter by task name
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with task records and metadata
    """
    status_filter = request.args.get('status')
    name_filter = request.args.get('name')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    # Enforce limits
    if limit > 200:
        limit = 200
    if limit < 1:
        limit = 50
    if offset < 0:
        offset = 0

    query = TaskHistory.query

    if status_filter:
        if status_filter not in TASK_STATUSES:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(TaskHistory.status == status_filter)

    if name_filter:
        query = query.filter(TaskHistory.name == name_filter)

    total_count = query.count()

    records = query.order_by(
        TaskHistory.created_at.desc(), TaskHistory.id.desc()
    ).limit(limit).offset(offset).all()

    return jsonify({
        'records': [serialize_task(record) for record in records],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<int:task_id>', methods=['GET'])
def get_task(task_id):
    """
    Get a single task including its logs.

    Args:
        task_id: TaskHistory ID
    """
    record = db.get_or_404(TaskHistory, task_id)
    return jsonify(serialize_task(record, include_logs=True))


@bp.route('/<int:task_id>/cancel', methods=['POST'])
def cancel_task(task_id):
    """
    Cancel a queued task or request cancellation of a running one.

    A queued task is cancelled immediately. A running task stops at its next
    checkpoint (between records or files).

    Args:
        task_id: TaskHistory ID

    Returns:
        JSON with cancellation status message
    """
    record = db.get_or_404(TaskHistory, task_id)

    if record.status == 'queued':
        record.status = 'cancelled'
        record.cancellation_requested = True
        record.completed_at = datetime.utcnow()
        db.session.commit()
        remove_task_job(record.id)

        return jsonify({
            'message': 'Task cancelled before it started.',
            'status': 'cancelled'
        })

    if record.status not in ('running', 'cancelling'):
        return jsonify({
            'error': f'Cannot cancel task with status: {record.status}'
        }), 400

    if record.cancellation_requested:
        return jsonify({
            'message': 'Cancellation already requested',
            'status': 'cancelling'
        })

    record.cancellation_requested = True
    record.status = 'cancelling'
    db.session.commit()

    return jsonify({
        'message': 'Cancellation requested. The task will stop at the next safe checkpoint.',
        'status': 'cancelling'
    })


@bp.route('/queue', methods=['GET'])
def queue_status():
    """Scheduler state and pending task jobs."""
    return jsonify(get_scheduler_diagnostics())
