"""
Error taxonomy for the backup/restore engine.

Task-level failures surface as one of these types; per-record restore
failures are caught by the restorer and never escape it.
"""


class BackupError(Exception):
    """Base class for backup and restore failures."""
    pass


class ValidationError(BackupError):
    """Raised when a task payload is malformed, before any I/O happens."""
    pass


class BundleIOError(BackupError):
    """Raised when a bundle location cannot be created, read or written."""
    pass


class NetworkError(BackupError):
    """Raised on timeout, refused connection or name resolution failure."""
    pass


class ProtocolError(BackupError):
    """Raised when a remote host is not a recognized backup server."""
    pass


class StoreError(BackupError):
    """Raised when the library or settings store fails a read or write."""
    pass


class TaskCancelled(BackupError):
    """Raised at a checkpoint after cancellation of a task was requested."""
    pass
