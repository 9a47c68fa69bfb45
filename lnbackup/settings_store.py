"""
Key/value settings store.

Settings are flat scalars (str, int, float, bool) persisted one row per key
in the settings table. Readers interested in changes register a listener
with subscribe(); listeners are called with (key, value) after each write,
and with (key, None) after a delete.
"""

import json
import logging
from typing import Any, Callable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from lnbackup import db
from lnbackup.models import Setting
from lnbackup.backup.errors import StoreError

logger = logging.getLogger(__name__)

SCALAR_TYPES = (str, bool, int, float)

Listener = Callable[[str, Any], None]


def is_scalar(value: Any) -> bool:
    """Check whether a value can be stored as a setting."""
    return isinstance(value, SCALAR_TYPES)


class SettingsStore:
    """Settings persisted in the database with change notifications."""

    def __init__(self, session=None):
        self.session = session or db.session
        self._listeners: List[Listener] = []

    def get_all_keys(self) -> List[str]:
        try:
            return [key for (key,) in self.session.query(Setting.key).order_by(Setting.key)]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list settings: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        try:
            row = self.session.get(Setting, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read setting {key}: {e}")

        if row is None:
            return default

        try:
            return json.loads(row.value)
        except ValueError:
            logger.warning(f"Setting {key} holds an unreadable value, ignoring it")
            return default

    def get_string(self, key: str) -> Optional[str]:
        value = self.get(key)
        return value if isinstance(value, str) else None

    def get_bool(self, key: str) -> Optional[bool]:
        value = self.get(key)
        return value if isinstance(value, bool) else None

    def get_number(self, key: str) -> Optional[float]:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    def set_any(self, key: str, value: Any):
        """
        Store a scalar setting, replacing any previous value.

        Raises:
            ValueError: If key is empty or value is not a scalar
            StoreError: If the write fails
        """
        if not key:
            raise ValueError("Setting key must not be empty")
        if not is_scalar(value):
            raise ValueError(f"Setting {key} must be a string, number or boolean, got {type(value).__name__}")

        try:
            row = self.session.get(Setting, key)
            if row is None:
                self.session.add(Setting(key=key, value=json.dumps(value)))
            else:
                row.value = json.dumps(value)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to write setting {key}: {e}")

        self._notify(key, value)

    def delete(self, key: str):
        try:
            row = self.session.get(Setting, key)
            if row is None:
                return
            self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to delete setting {key}: {e}")

        self._notify(key, None)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str, value: Any):
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                logger.exception(f"Settings listener failed for key {key}")


def get_settings_store() -> SettingsStore:
    """Return the settings store of the current Flask app."""
    return current_app.extensions['settings_store']
