"""
Task executor - runs one queued backup or restore task.

Workflow:
1. Mark the TaskHistory record running
2. Validate the stored payload
3. Run the handler for the task name:
   - LOCAL_BACKUP: write bundle to cache, archive it into the destination
   - LOCAL_RESTORE: extract archive to cache (or use a bundle dir), apply it
   - SELF_HOST_BACKUP: write bundle to cache, upload it
   - SELF_HOST_RESTORE: download bundle to cache, apply it
4. Clean up the cache directory
5. Update TaskHistory (status: succeeded/failed/cancelled)
"""

import os
import json
import shutil
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app

from lnbackup import db
from lnbackup.library import LibraryStore
from lnbackup.models import TaskHistory
from lnbackup.settings_store import SettingsStore, get_settings_store
from .compression import (
    create_bundle_archive, extract_bundle_archive, generate_archive_filename,
    strip_archive_extension, get_archive_size
)
from .errors import BundleIOError, TaskCancelled, ValidationError
from .jobs import LOCAL_BACKUP, LOCAL_RESTORE, SELF_HOST_BACKUP, SELF_HOST_RESTORE, validate_payload
from .remote import SelfHostClient
from .restorer import BundleReader
from .serializer import BundleWriter

logger = logging.getLogger(__name__)


class TaskExecutor:
    """
    Runs a backup/restore task and records the outcome on its history row.
    """

    def __init__(self, task: TaskHistory, config: Optional[Dict[str, Any]] = None,
                 library: Optional[LibraryStore] = None,
                 settings_store: Optional[SettingsStore] = None,
                 transport=None):
        """
        Initialize task executor.

        Args:
            task: TaskHistory record to execute
            config: Configuration mapping (defaults to the current app config)
            library: Library store (defaults to one on the app session)
            settings_store: Settings store (defaults to the app's store)
            transport: Optional httpx transport for the self-host client
        """
        self.task = task
        self.config = config if config is not None else current_app.config
        self.library = library or LibraryStore()
        self.settings_store = settings_store or get_settings_store()
        self.transport = transport
        self.cache_dir = Path(self.config['BACKUP_CACHE_DIR'])
        self.logs = []
        self._log_flush_counter = 0
        self._cache_used = False

    def execute(self) -> TaskHistory:
        """
        Execute the task.

        Returns:
            TaskHistory record with execution results
        """
        self.task.status = 'running'
        self.task.started_at = datetime.utcnow()
        db.session.commit()

        self._log(f"Starting task: {self.task.name}")

        try:
            payload = validate_payload(self.task.name, self._load_payload())
            handlers = {
                LOCAL_BACKUP: self._local_backup,
                LOCAL_RESTORE: self._local_restore,
                SELF_HOST_BACKUP: self._self_host_backup,
                SELF_HOST_RESTORE: self._self_host_restore,
            }
            handlers[self.task.name](payload)

            self.task.status = 'succeeded'
            self.task.completed_at = datetime.utcnow()
            self._log("Task completed successfully")

        except TaskCancelled as e:
            self.task.status = 'cancelled'
            self.task.completed_at = datetime.utcnow()
            self._log(f"Task cancelled: {e}")

        except Exception as e:
            self.task.status = 'failed'
            self.task.completed_at = datetime.utcnow()
            self.task.error_message = str(e)
            self._log(f"Task failed: {type(e).__name__}: {e}")

        finally:
            self._cleanup()

            self.task.logs = '\n'.join(self.logs)
            db.session.commit()

        return self.task

    def _load_payload(self) -> Dict[str, Any]:
        try:
            return json.loads(self.task.payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Stored payload is not valid JSON: {e}")

    def _local_backup(self, payload: Dict[str, str]):
        self._write_bundle()

        filename = strip_archive_extension(generate_archive_filename())
        self._log(f"Creating archive in {payload['destination']}")
        archive_path = create_bundle_archive(
            str(self.cache_dir),
            os.path.join(payload['destination'], filename)
        )

        file_size = get_archive_size(archive_path)
        self.task.result_path = archive_path
        self.task.file_size_bytes = file_size
        self._log(f"Archive created: {os.path.basename(archive_path)} ({file_size / 1024 / 1024:.2f} MB)")

    def _local_restore(self, payload: Dict[str, str]):
        source = Path(payload['source'])

        if source.is_dir():
            self._log(f"Restoring from bundle directory {source}")
            bundle_dir = source
        elif source.is_file():
            self._log(f"Extracting archive {source.name}")
            self._reset_cache()
            extracted = extract_bundle_archive(str(source), str(self.cache_dir))
            self._log(f"Extracted {extracted} entries")
            bundle_dir = self.cache_dir
        else:
            raise BundleIOError(f"Backup not found: {source}")

        self._flush_logs_to_db()
        self._apply_bundle(bundle_dir)

    def _self_host_backup(self, payload: Dict[str, str]):
        self._write_bundle()

        self._log(f"Uploading to {payload['host']} ({payload['backupFolder']})")
        with self._self_host_client(payload['host']) as client:
            uploaded = client.push_bundle(self.cache_dir, payload['backupFolder'], self._check_cancellation)
        self._log(f"Uploaded {uploaded} files")

    def _self_host_restore(self, payload: Dict[str, str]):
        self._log(f"Downloading {payload['backupFolder']} from {payload['host']}")
        self._cache_used = True
        with self._self_host_client(payload['host']) as client:
            downloaded = client.pull_bundle(payload['backupFolder'], self.cache_dir, self._check_cancellation)
        self._log(f"Downloaded {downloaded} files")
        self._flush_logs_to_db()

        self._apply_bundle(self.cache_dir)

    def _write_bundle(self):
        self._log("Writing bundle to cache directory")
        self._cache_used = True
        writer = BundleWriter(
            self.library,
            self.settings_store,
            self.config['STORAGE_ROOT'],
            cancellation_check=self._check_cancellation
        )
        counts = writer.produce_bundle(self.cache_dir)
        self._log(
            f"Bundle written: {counts['novels']} novels, {counts['chapters']} chapters, "
            f"{counts['categories']} categories, {counts['settings']} settings"
        )
        self._flush_logs_to_db()

    def _apply_bundle(self, bundle_dir: Path):
        self._log("Applying bundle")
        reader = BundleReader(
            self.library,
            self.settings_store,
            self.config['STORAGE_ROOT'],
            cancellation_check=self._check_cancellation
        )
        summary = reader.apply_bundle(bundle_dir)

        self.task.summary = json.dumps(summary)
        self._log(
            f"Restored {summary['novels_restored']} novels ({summary['chapters_restored']} chapters), "
            f"{summary['categories_restored']} categories, {summary['settings_restored']} settings "
            f"from bundle version {summary['version']}"
        )
        for error in summary['errors']:
            self._log(f"Skipped: {error}")

    def _self_host_client(self, host: str) -> SelfHostClient:
        return SelfHostClient(
            host,
            timeout=self.config['SELF_HOST_TIMEOUT'],
            handshake_timeout=self.config['SELF_HOST_HANDSHAKE_TIMEOUT'],
            transport=self.transport
        )

    def _check_cancellation(self):
        """Raise TaskCancelled if cancellation was requested for this task."""
        requested = db.session.query(TaskHistory.cancellation_requested).filter_by(
            id=self.task.id
        ).scalar()
        if requested:
            raise TaskCancelled("Cancellation requested")

    def _reset_cache(self):
        self._cache_used = True
        try:
            if self.cache_dir.exists():
                shutil.rmtree(self.cache_dir)
        except OSError as e:
            raise BundleIOError(f"Failed to clear cache directory {self.cache_dir}: {e}")

    def _cleanup(self):
        """Remove the bundle written to or extracted into the cache directory."""
        if self._cache_used and self.cache_dir.exists():
            try:
                shutil.rmtree(self.cache_dir)
                self._log("Cleaned up cache directory")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup cache directory: {e}")

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(f"Task {self.task.id} ({self.task.name}): {message}")

        # Flush logs every 5 entries
        self._log_flush_counter += 1
        if self._log_flush_counter >= 5:
            self._flush_logs_to_db()

    def _flush_logs_to_db(self):
        """Flush accumulated logs to database for real-time visibility."""
        self.task.logs = '\n'.join(self.logs)
        db.session.commit()
        self._log_flush_counter = 0


def execute_task(task_id: int, **executor_kwargs) -> TaskHistory:
    """
    Execute a queued task by ID.

    Tasks cancelled (or otherwise moved on) before they started are
    returned unchanged.

    Args:
        task_id: ID of TaskHistory to execute
        **executor_kwargs: Passed to TaskExecutor

    Returns:
        TaskHistory record with execution results

    Raises:
        ValueError: If task not found
    """
    task = db.session.get(TaskHistory, task_id)

    if not task:
        raise ValueError(f"Task not found: {task_id}")

    if task.status != 'queued':
        logger.info(f"Task {task_id} is {task.status}, not running it")
        return task

    executor = TaskExecutor(task, **executor_kwargs)
    return executor.execute()
