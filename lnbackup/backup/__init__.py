"""
Backup module for LNReader backups.

This module handles the core backup functionality including:
- Bundle layout and record conversion (layout, settings_codec)
- Serialization of the library and settings into a bundle (serializer)
- Restoring a bundle into the library and settings (restorer)
- Self-host server transfer (remote)
- Task payloads and execution (jobs, executor)

Only the error types are re-exported here; the stores import them, so the
package itself must not import the stores.
"""

from .errors import (
    BackupError, ValidationError, BundleIOError, NetworkError,
    ProtocolError, StoreError, TaskCancelled
)

__all__ = [
    'BackupError',
    'ValidationError',
    'BundleIOError',
    'NetworkError',
    'ProtocolError',
    'StoreError',
    'TaskCancelled'
]
