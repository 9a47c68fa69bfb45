"""
Unit tests for the settings store (lnbackup/settings_store.py).
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from lnbackup.backup.errors import StoreError
from lnbackup.models import Setting


class TestSettingsStore:
    """Test reading and writing settings."""

    def test_set_and_get_each_scalar_type(self, settings_store):
        settings_store.set_any('S', 'text')
        settings_store.set_any('I', 3)
        settings_store.set_any('F', 2.5)
        settings_store.set_any('B', False)

        assert settings_store.get('S') == 'text'
        assert settings_store.get('I') == 3
        assert settings_store.get('F') == 2.5
        assert settings_store.get('B') is False

    def test_typed_getters(self, settings_store):
        settings_store.set_any('S', 'text')
        settings_store.set_any('B', True)
        settings_store.set_any('N', 7)

        assert settings_store.get_string('S') == 'text'
        assert settings_store.get_string('N') is None
        assert settings_store.get_bool('B') is True
        assert settings_store.get_bool('S') is None
        assert settings_store.get_number('N') == 7
        # Booleans are not numbers here
        assert settings_store.get_number('B') is None

    def test_get_missing_key_returns_default(self, settings_store):
        assert settings_store.get('MISSING') is None
        assert settings_store.get('MISSING', 'fallback') == 'fallback'

    def test_set_replaces_existing_value(self, settings_store, db):
        settings_store.set_any('APP_THEME', 'dark')
        settings_store.set_any('APP_THEME', 'light')

        assert settings_store.get('APP_THEME') == 'light'
        assert Setting.query.count() == 1

    def test_get_all_keys_sorted(self, settings_store):
        settings_store.set_any('B_KEY', 1)
        settings_store.set_any('A_KEY', 2)

        assert settings_store.get_all_keys() == ['A_KEY', 'B_KEY']

    def test_unreadable_value_returns_default(self, settings_store, db):
        db.session.add(Setting(key='BROKEN', value='{not json'))
        db.session.commit()

        assert settings_store.get('BROKEN', 'fallback') == 'fallback'

    def test_reject_non_scalar(self, settings_store):
        with pytest.raises(ValueError):
            settings_store.set_any('LIST', [1, 2])

        with pytest.raises(ValueError):
            settings_store.set_any('NONE', None)

    def test_reject_empty_key(self, settings_store):
        with pytest.raises(ValueError):
            settings_store.set_any('', 'value')

    def test_delete(self, settings_store):
        settings_store.set_any('APP_THEME', 'dark')
        settings_store.delete('APP_THEME')
        settings_store.delete('APP_THEME')

        assert settings_store.get('APP_THEME') is None

    def test_database_failure_raises_store_error(self, settings_store):
        with patch.object(settings_store.session, 'get', side_effect=OperationalError('SELECT', {}, Exception('locked'))):
            with pytest.raises(StoreError):
                settings_store.set_any('APP_THEME', 'dark')


class TestSettingsSubscriptions:
    """Test change notifications."""

    def test_listener_called_on_set_and_delete(self, settings_store):
        listener = MagicMock()
        settings_store.subscribe(listener)

        settings_store.set_any('APP_THEME', 'dark')
        settings_store.delete('APP_THEME')

        listener.assert_any_call('APP_THEME', 'dark')
        listener.assert_any_call('APP_THEME', None)

    def test_unsubscribe(self, settings_store):
        listener = MagicMock()
        unsubscribe = settings_store.subscribe(listener)

        unsubscribe()
        settings_store.set_any('APP_THEME', 'dark')

        listener.assert_not_called()

    def test_failing_listener_does_not_break_write(self, settings_store):
        settings_store.subscribe(MagicMock(side_effect=RuntimeError('boom')))
        other = MagicMock()
        settings_store.subscribe(other)

        settings_store.set_any('APP_THEME', 'dark')

        assert settings_store.get('APP_THEME') == 'dark'
        other.assert_called_once_with('APP_THEME', 'dark')
