"""
Settings codec: flattens the settings store into a bundle's Setting.json
and replays it on restore.

Keys in EXCLUDED_KEYS describe process-local or time-sensitive state and
never travel in a backup.
"""

import logging
from typing import Any, Dict

from lnbackup.settings_store import SettingsStore, is_scalar

logger = logging.getLogger(__name__)


TASK_QUEUE_KEY = 'APP_SERVICE'  # Background task queue state
TRACKER_KEY = 'TRACKER'  # Tracker login session
SELF_HOST_KEY = 'SELF_HOST_BACKUP'  # Remembered self-host server URL
LAST_UPDATE_TIME_KEY = 'LAST_UPDATE_TIME'  # Last library update check

EXCLUDED_KEYS = frozenset({
    TASK_QUEUE_KEY,
    TRACKER_KEY,
    SELF_HOST_KEY,
    LAST_UPDATE_TIME_KEY,
})


def snapshot_settings(settings_store: SettingsStore) -> Dict[str, Any]:
    """
    Take a portable snapshot of the settings store.

    Args:
        settings_store: Live settings store

    Returns:
        Mapping of every non-excluded key to its scalar value
    """
    data = {}

    for key in settings_store.get_all_keys():
        if not key or key in EXCLUDED_KEYS:
            continue

        value = settings_store.get(key)
        if is_scalar(value):
            data[key] = value

    return data


def restore_settings(settings_store: SettingsStore, data: Dict[str, Any]) -> int:
    """
    Overwrite live settings with the values of a snapshot.

    Keys absent from the snapshot are left untouched. Excluded keys and
    non-scalar values are skipped one by one.

    Args:
        settings_store: Live settings store
        data: Snapshot read from a bundle

    Returns:
        Number of keys written

    Raises:
        ValueError: If the snapshot is not a mapping
    """
    if not isinstance(data, dict):
        raise ValueError(f"Settings snapshot must be an object, got {type(data).__name__}")

    restored = 0

    for key, value in data.items():
        if key in EXCLUDED_KEYS:
            logger.debug(f"Skipping excluded setting {key}")
            continue

        try:
            settings_store.set_any(key, value)
            restored += 1
        except ValueError as e:
            logger.warning(f"Skipping setting {key}: {e}")

    return restored
