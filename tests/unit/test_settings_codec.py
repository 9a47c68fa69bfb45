"""
Unit tests for settings snapshot and restore (lnbackup/backup/settings_codec.py).
"""

import pytest

from lnbackup.backup.settings_codec import EXCLUDED_KEYS, snapshot_settings, restore_settings


class TestSnapshotSettings:
    """Test taking a settings snapshot."""

    def test_snapshot_excludes_process_local_keys(self, settings_store, sample_settings):
        snapshot = snapshot_settings(settings_store)

        for key in EXCLUDED_KEYS:
            assert key not in snapshot

    def test_snapshot_keeps_scalar_types(self, settings_store, sample_settings):
        snapshot = snapshot_settings(settings_store)

        assert snapshot == {
            'APP_THEME': 'dark',
            'READER_FONT_SIZE': 16,
            'READER_LINE_HEIGHT': 1.5,
            'SHOW_DOWNLOAD_BADGES': False,
        }

    def test_empty_store(self, settings_store):
        assert snapshot_settings(settings_store) == {}


class TestRestoreSettings:
    """Test replaying a snapshot."""

    def test_restore_overwrites_values(self, settings_store, sample_settings):
        count = restore_settings(settings_store, {'APP_THEME': 'light', 'NEW_KEY': True})

        assert count == 2
        assert settings_store.get('APP_THEME') == 'light'
        assert settings_store.get('NEW_KEY') is True

    def test_restore_leaves_absent_keys_untouched(self, settings_store, sample_settings):
        restore_settings(settings_store, {'APP_THEME': 'light'})

        assert settings_store.get('READER_FONT_SIZE') == 16

    def test_restore_skips_excluded_keys(self, settings_store, sample_settings):
        count = restore_settings(settings_store, {
            'SELF_HOST_BACKUP': 'http://attacker.example',
            'TRACKER': 'other-session',
        })

        assert count == 0
        assert settings_store.get('SELF_HOST_BACKUP') == 'http://192.168.1.10:8000'
        assert settings_store.get('TRACKER') == 'tracker-session'

    def test_restore_skips_non_scalar_values(self, settings_store):
        count = restore_settings(settings_store, {
            'GOOD': 'yes',
            'NESTED': {'a': 1},
            'LIST': [1, 2],
            'NULL': None,
        })

        assert count == 1
        assert settings_store.get_all_keys() == ['GOOD']

    def test_restore_rejects_non_mapping(self, settings_store):
        with pytest.raises(ValueError):
            restore_settings(settings_store, ['APP_THEME', 'dark'])

    def test_snapshot_restores_to_equal_settings(self, settings_store, sample_settings):
        snapshot = snapshot_settings(settings_store)

        for key in list(snapshot):
            settings_store.delete(key)
        restore_settings(settings_store, snapshot)

        assert snapshot_settings(settings_store) == snapshot
