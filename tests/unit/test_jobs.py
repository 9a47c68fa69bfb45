"""
Unit tests for the job adapter (lnbackup/backup/jobs.py).
"""

from unittest.mock import MagicMock

import pytest

from lnbackup.backup.errors import ValidationError
from lnbackup.backup.jobs import (
    BackupJobAdapter, validate_payload, backup_folder_name,
    LOCAL_BACKUP, LOCAL_RESTORE, SELF_HOST_BACKUP, SELF_HOST_RESTORE
)


class TestValidatePayload:
    """Test payload shape checks."""

    def test_strips_and_reduces_to_required_fields(self):
        payload = validate_payload(SELF_HOST_RESTORE, {
            'host': ' http://h:8000 ', 'backupFolder': 'a.backup', 'extra': 1
        })
        assert payload == {'host': 'http://h:8000', 'backupFolder': 'a.backup'}

    def test_unknown_task(self):
        with pytest.raises(ValidationError, match='Unknown task'):
            validate_payload('DROP_LIBRARY', {})

    @pytest.mark.parametrize('payload', [
        {},
        {'host': 'http://h'},
        {'host': '', 'backupFolder': 'a.backup'},
        {'host': 'http://h', 'backupFolder': '   '},
        {'host': 'http://h', 'backupFolder': 5},
    ])
    def test_incomplete_remote_payload(self, payload):
        with pytest.raises(ValidationError):
            validate_payload(SELF_HOST_BACKUP, payload)

    def test_payload_must_be_object(self):
        with pytest.raises(ValidationError):
            validate_payload(LOCAL_BACKUP, 'destination')


class TestBackupFolderName:
    """Test server folder naming."""

    def test_appends_extension(self):
        assert backup_folder_name('monday') == 'monday.backup'

    def test_keeps_existing_extension(self):
        assert backup_folder_name('monday.backup') == 'monday.backup'

    def test_empty_name(self):
        with pytest.raises(ValidationError):
            backup_folder_name('  ')


class TestBackupJobAdapter:
    """Test dispatch of the four operations."""

    def setup_method(self):
        self.submit = MagicMock(return_value='queued-task')
        self.adapter = BackupJobAdapter(self.submit)

    def test_remote_backup(self):
        result = self.adapter.remote_backup('http://h:8000', 'monday')

        assert result == 'queued-task'
        self.submit.assert_called_once_with(
            SELF_HOST_BACKUP, {'host': 'http://h:8000', 'backupFolder': 'monday.backup'}
        )

    def test_remote_restore(self):
        self.adapter.remote_restore('http://h:8000', 'monday.backup')

        self.submit.assert_called_once_with(
            SELF_HOST_RESTORE, {'host': 'http://h:8000', 'backupFolder': 'monday.backup'}
        )

    def test_local_backup_and_restore(self):
        self.adapter.local_backup('/backups')
        self.adapter.local_restore('/backups/a.zip')

        assert self.submit.call_args_list[0].args == (LOCAL_BACKUP, {'destination': '/backups'})
        assert self.submit.call_args_list[1].args == (LOCAL_RESTORE, {'source': '/backups/a.zip'})

    def test_invalid_payload_is_never_submitted(self):
        with pytest.raises(ValidationError):
            self.adapter.remote_restore('', 'monday.backup')

        with pytest.raises(ValidationError):
            self.adapter.remote_backup('http://h', None)

        self.submit.assert_not_called()
