"""
Backup routes - Queue backup/restore tasks and talk to self-host servers.
"""

from flask import Blueprint, jsonify, request, current_app

from lnbackup.backup.errors import ValidationError, NetworkError, ProtocolError, StoreError
from lnbackup.backup.jobs import BackupJobAdapter
from lnbackup.backup.remote import SelfHostClient
from lnbackup.backup.settings_codec import SELF_HOST_KEY
from lnbackup.scheduler import submit_task
from lnbackup.settings_store import get_settings_store
from lnbackup.routes.task_routes import serialize_task


bp = Blueprint('backup', __name__, url_prefix='/api')


def _self_host_client(host: str) -> SelfHostClient:
    return SelfHostClient(
        host,
        timeout=current_app.config['SELF_HOST_TIMEOUT'],
        handshake_timeout=current_app.config['SELF_HOST_HANDSHAKE_TIMEOUT']
    )


def _resolve_host(host) -> str:
    """Use the given host, or the remembered self-host URL when none is given."""
    if isinstance(host, str) and host.strip():
        return host.strip()
    return get_settings_store().get_string(SELF_HOST_KEY) or ''


def _queue(submit_fn, *args):
    """Submit through the job adapter and format the queued task."""
    adapter = BackupJobAdapter(submit_task)

    try:
        task = submit_fn(adapter, *args)
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400
    except RuntimeError as e:
        current_app.logger.error(f"Task queue unavailable: {e}")
        return jsonify({'error': 'Task queue is not running'}), 503

    return jsonify(serialize_task(task)), 202


@bp.route('/backup/local', methods=['POST'])
def local_backup():
    """
    Queue a local backup.

    Request body:
        - destination: Directory for the archive (default: LOCAL_BACKUP_DIR)

    Returns:
        JSON with the queued task
    """
    data = request.get_json(silent=True) or {}
    destination = data.get('destination') or current_app.config['LOCAL_BACKUP_DIR']

    return _queue(BackupJobAdapter.local_backup, destination)


@bp.route('/restore/local', methods=['POST'])
def local_restore():
    """
    Queue a restore from a local archive or bundle directory.

    Request body:
        - source: Path to a backup archive or bundle directory (required)
    """
    data = request.get_json(silent=True) or {}

    return _queue(BackupJobAdapter.local_restore, data.get('source'))


@bp.route('/remote/backup', methods=['POST'])
def remote_backup():
    """
    Queue a backup to a self-host server.

    Request body:
        - host: Server URL (default: remembered self-host URL)
        - name: Backup name; '.backup' is appended for the server folder (required)
    """
    data = request.get_json(silent=True) or {}

    return _queue(BackupJobAdapter.remote_backup, _resolve_host(data.get('host')), data.get('name'))


@bp.route('/remote/restore', methods=['POST'])
def remote_restore():
    """
    Queue a restore from a self-host server.

    Request body:
        - host: Server URL (default: remembered self-host URL)
        - backupFolder: Server folder to restore (required)
    """
    data = request.get_json(silent=True) or {}

    return _queue(BackupJobAdapter.remote_restore, _resolve_host(data.get('host')), data.get('backupFolder'))


@bp.route('/remote/backups', methods=['GET'])
def list_remote_backups():
    """
    List backup folders on a self-host server.

    Query params:
        - host: Server URL (default: remembered self-host URL)

    Returns:
        JSON with host and folder names
    """
    host = _resolve_host(request.args.get('host'))

    try:
        with _self_host_client(host) as client:
            backups = client.list_backups()
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400
    except (NetworkError, ProtocolError) as e:
        current_app.logger.warning(f"Listing backups on {host} failed: {e}")
        return jsonify({'error': str(e)}), 502

    return jsonify({'host': host, 'backups': backups})


@bp.route('/remote/host', methods=['GET'])
def get_remote_host():
    """Get the remembered self-host URL."""
    return jsonify({'host': get_settings_store().get_string(SELF_HOST_KEY)})


@bp.route('/remote/host', methods=['PUT'])
def set_remote_host():
    """
    Verify a self-host server and remember its URL.

    Request body:
        - host: Server URL (required)
    """
    data = request.get_json(silent=True) or {}
    host = data.get('host')

    try:
        with _self_host_client(host) as client:
            client.check_host()
            host = client.host
        get_settings_store().set_any(SELF_HOST_KEY, host)
    except ValidationError as e:
        return jsonify({'error': str(e)}), 400
    except (NetworkError, ProtocolError) as e:
        current_app.logger.warning(f"Self-host verification failed: {e}")
        return jsonify({'error': str(e)}), 502
    except StoreError as e:
        current_app.logger.error(f"Failed to save self-host URL: {e}")
        return jsonify({'error': 'Failed to save self-host URL'}), 500

    return jsonify({'message': 'Self-host server verified', 'host': host})
