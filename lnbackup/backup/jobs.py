"""
Job adapter: turns backup and restore requests into background tasks.

The adapter validates the payload shape and hands it to a submit function
(name, payload) supplied by the task queue. It performs no I/O itself and
returns whatever the queue returns for the submitted task.
"""

from typing import Any, Callable, Dict

from .errors import ValidationError
from .layout import BUNDLE_EXTENSION


LOCAL_BACKUP = 'LOCAL_BACKUP'
LOCAL_RESTORE = 'LOCAL_RESTORE'
SELF_HOST_BACKUP = 'SELF_HOST_BACKUP'
SELF_HOST_RESTORE = 'SELF_HOST_RESTORE'

# Required payload fields per task name
TASK_PAYLOAD_FIELDS = {
    LOCAL_BACKUP: ('destination',),
    LOCAL_RESTORE: ('source',),
    SELF_HOST_BACKUP: ('host', 'backupFolder'),
    SELF_HOST_RESTORE: ('host', 'backupFolder'),
}

SubmitFn = Callable[[str, Dict[str, str]], Any]


def validate_payload(name: str, payload: Dict[str, Any]) -> Dict[str, str]:
    """
    Check a task payload against the shape its task name requires.

    Args:
        name: Task name
        payload: Payload mapping

    Returns:
        Payload reduced to the required fields, with surrounding whitespace removed

    Raises:
        ValidationError: If the task name is unknown or a field is missing or empty
    """
    if name not in TASK_PAYLOAD_FIELDS:
        raise ValidationError(f"Unknown task: {name}")

    if not isinstance(payload, dict):
        raise ValidationError(f"{name} payload must be an object")

    cleaned = {}
    for field in TASK_PAYLOAD_FIELDS[name]:
        value = payload.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} requires a non-empty '{field}'")
        cleaned[field] = value.strip()

    return cleaned


def backup_folder_name(backup_name: str) -> str:
    """
    Turn a user-chosen backup name into a server folder name.

    Raises:
        ValidationError: If the name is empty
    """
    if not isinstance(backup_name, str) or not backup_name.strip():
        raise ValidationError("Backup name is required")

    backup_name = backup_name.strip()
    if backup_name.endswith(BUNDLE_EXTENSION):
        return backup_name
    return backup_name + BUNDLE_EXTENSION


class BackupJobAdapter:
    """
    Submits the four backup/restore operations to a task queue.
    """

    def __init__(self, submit: SubmitFn):
        """
        Args:
            submit: Queue capability called as submit(task_name, payload)
        """
        self._submit = submit

    def local_backup(self, destination: str):
        return self._dispatch(LOCAL_BACKUP, {'destination': destination})

    def local_restore(self, source: str):
        return self._dispatch(LOCAL_RESTORE, {'source': source})

    def remote_backup(self, host: str, backup_name: str):
        return self._dispatch(SELF_HOST_BACKUP, {
            'host': host,
            'backupFolder': backup_folder_name(backup_name),
        })

    def remote_restore(self, host: str, backup_folder: str):
        return self._dispatch(SELF_HOST_RESTORE, {'host': host, 'backupFolder': backup_folder})

    def _dispatch(self, name: str, payload: Dict[str, Any]):
        return self._submit(name, validate_payload(name, payload))
