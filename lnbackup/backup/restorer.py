"""
Restorer - replays a bundle into the library and settings stores.

Novels are restored before categories because category memberships are
resolved through the novels restored from the same bundle. Each entry is
optional: a missing entry means nothing to restore for it. A single
malformed novel record or category entry is logged and skipped.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from lnbackup.library import LibraryStore
from lnbackup.settings_store import SettingsStore
from .errors import BundleIOError
from .layout import (
    VERSION_ENTRY, NOVELS_ENTRY, CATEGORY_ENTRY, SETTING_ENTRY, RECORD_SUFFIX,
    app_storage_uri, absolute_cover, record_to_novel_fields, record_to_chapter_fields, read_json
)
from .settings_codec import restore_settings

logger = logging.getLogger(__name__)


def normalize_id(value: Any) -> Any:
    """Bundle ids may be written as numbers or numeric strings."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


class BundleReader:
    """
    Applies bundles to a library store and a settings store.
    """

    def __init__(self, library: LibraryStore, settings_store: SettingsStore, storage_root: str,
                 cancellation_check: Optional[Callable[[], None]] = None):
        """
        Initialize bundle reader.

        Args:
            library: Library store to upsert into
            settings_store: Settings store to overwrite
            storage_root: Current app private storage root, prefixed to portable covers
            cancellation_check: Optional function called between records; raises to abort
        """
        self.library = library
        self.settings_store = settings_store
        self.storage_uri = app_storage_uri(storage_root)
        self.cancellation_check = cancellation_check

    def apply_bundle(self, source) -> Dict[str, Any]:
        """
        Restore a bundle directory.

        Args:
            source: Bundle directory path

        Returns:
            Summary dict:
            {
                'version': str or None,
                'novels_restored': int,
                'novels_failed': int,
                'chapters_restored': int,
                'categories_restored': int,
                'categories_failed': int,
                'memberships_dropped': int,
                'settings_restored': int,
                'errors': List[str]
            }

        Raises:
            BundleIOError: If source is not a readable directory
        """
        source = Path(source)
        if not source.is_dir():
            raise BundleIOError(f"Bundle not found: {source}")

        summary = {
            'version': None,
            'novels_restored': 0,
            'novels_failed': 0,
            'chapters_restored': 0,
            'categories_restored': 0,
            'categories_failed': 0,
            'memberships_dropped': 0,
            'settings_restored': 0,
            'errors': []
        }

        summary['version'] = self._read_version(source / VERSION_ENTRY, summary)
        id_map = self._restore_novels(source / NOVELS_ENTRY, summary)
        self._restore_categories(source / CATEGORY_ENTRY, id_map, summary)
        self._restore_settings(source / SETTING_ENTRY, summary)

        logger.info(
            f"Bundle restored from {source} (version {summary['version']}): "
            f"{summary['novels_restored']} novels, {summary['categories_restored']} categories, "
            f"{summary['settings_restored']} settings, {len(summary['errors'])} errors"
        )
        return summary

    def _read_version(self, path: Path, summary: Dict[str, Any]) -> Optional[str]:
        # Informational only; bundles from other versions are restored as-is
        if not path.is_file():
            logger.info("Bundle has no version entry")
            return None

        try:
            data = read_json(path)
            return str(data['version'])
        except Exception as e:
            self._record_error(summary, f"{VERSION_ENTRY}: {e}")
            return None

    def _restore_novels(self, novels_dir: Path, summary: Dict[str, Any]) -> Dict[Any, int]:
        """Restore every novel record; returns bundle novel id -> local novel id."""
        id_map = {}

        if not novels_dir.is_dir():
            logger.info("Bundle has no novels entry, skipping novels")
            return id_map

        try:
            record_files = sorted(
                item for item in novels_dir.iterdir()
                if item.is_file() and item.suffix == RECORD_SUFFIX
            )
        except OSError as e:
            self._record_error(summary, f"{NOVELS_ENTRY}: {e}")
            return id_map

        for record_file in record_files:
            if self.cancellation_check:
                self.cancellation_check()

            try:
                record = read_json(record_file)
                source_id = self._source_id(record, record_file)
                novel, chapter_count = self._restore_novel(record)
            except Exception as e:
                summary['novels_failed'] += 1
                self._record_error(summary, f"{NOVELS_ENTRY}/{record_file.name}: {e}")
                continue

            id_map[source_id] = novel.id

            summary['novels_restored'] += 1
            summary['chapters_restored'] += chapter_count

        return id_map

    @staticmethod
    def _source_id(record, record_file: Path):
        """Bundle id of a novel record; the file name stands in when the record has none."""
        if not isinstance(record, dict):
            raise ValueError("novel record must be an object")

        source_id = record.get('id')
        if source_id is None:
            source_id = record_file.stem

        source_id = normalize_id(source_id)
        if isinstance(source_id, bool) or not isinstance(source_id, (int, str)):
            raise ValueError(f"novel id must be a number or a string, got {source_id!r:.40}")
        return source_id

    def _restore_novel(self, record: Dict[str, Any]):
        novel_fields = record_to_novel_fields(record)
        novel_fields['cover'] = absolute_cover(novel_fields.get('cover'), self.storage_uri)

        chapter_records = record.get('chapters') or []
        if not isinstance(chapter_records, list):
            raise ValueError("chapters must be a list")
        chapters = [record_to_chapter_fields(chapter) for chapter in chapter_records]

        novel = self.library.upsert_novel_and_chapters(novel_fields, chapters)
        return novel, len(chapters)

    def _restore_categories(self, path: Path, id_map: Dict[Any, int], summary: Dict[str, Any]):
        if not path.is_file():
            logger.info("Bundle has no categories entry, skipping categories")
            return

        try:
            categories = read_json(path)
            if not isinstance(categories, list):
                raise ValueError("categories entry must be a list")
        except Exception as e:
            self._record_error(summary, f"{CATEGORY_ENTRY}: {e}")
            return

        for entry in categories:
            if self.cancellation_check:
                self.cancellation_check()

            try:
                self._restore_category(entry, id_map, summary)
                summary['categories_restored'] += 1
            except Exception as e:
                summary['categories_failed'] += 1
                self._record_error(summary, f"{CATEGORY_ENTRY}: category {entry!r:.80}: {e}")

    def _restore_category(self, entry: Dict[str, Any], id_map: Dict[Any, int], summary: Dict[str, Any]):
        if not isinstance(entry, dict):
            raise ValueError("category must be an object")

        name = entry.get('name')
        if not isinstance(name, str) or not name:
            raise ValueError("category has no name")

        sort = entry.get('sort')
        if sort is not None and not isinstance(sort, int):
            raise ValueError("category sort must be an integer")

        novel_ids = entry.get('novelIds') or []
        if not isinstance(novel_ids, list):
            raise ValueError("novelIds must be a list")

        resolved = []
        for novel_id in novel_ids:
            local_id = id_map.get(normalize_id(novel_id))
            if local_id is None:
                summary['memberships_dropped'] += 1
                continue
            resolved.append(local_id)

        self.library.upsert_category(name, sort, resolved)

    def _restore_settings(self, path: Path, summary: Dict[str, Any]):
        if not path.is_file():
            logger.info("Bundle has no settings entry, skipping settings")
            return

        try:
            summary['settings_restored'] = restore_settings(self.settings_store, read_json(path))
        except Exception as e:
            self._record_error(summary, f"{SETTING_ENTRY}: {e}")

    @staticmethod
    def _record_error(summary: Dict[str, Any], message: str):
        logger.warning(f"Restore skipped {message}")
        summary['errors'].append(message)
