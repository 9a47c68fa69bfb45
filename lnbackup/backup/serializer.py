"""
Serializer - writes the current library and settings into a bundle.

Steps:
1. Remove any stale bundle at the destination and recreate it
2. Write the version entry
3. Write one NovelAndChapters record per novel
4. Write the categories entry with flattened memberships
5. Write the settings entry

The store is read live without locking; a mutation racing with
serialization can leave the bundle inconsistent across entities.
"""

import logging
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, Optional

from lnbackup import __version__
from lnbackup.library import LibraryStore
from lnbackup.settings_store import SettingsStore
from .errors import BundleIOError
from .layout import (
    VERSION_ENTRY, NOVELS_ENTRY, CATEGORY_ENTRY, SETTING_ENTRY, RECORD_SUFFIX,
    app_storage_uri, novel_to_record, category_to_record, write_json
)
from .settings_codec import snapshot_settings

logger = logging.getLogger(__name__)


class BundleWriter:
    """
    Produces bundles from a library store and a settings store.
    """

    def __init__(self, library: LibraryStore, settings_store: SettingsStore, storage_root: str,
                 app_version: str = __version__, cancellation_check: Optional[Callable[[], None]] = None):
        """
        Initialize bundle writer.

        Args:
            library: Library store to read novels, chapters and categories from
            settings_store: Settings store to snapshot
            storage_root: App private storage root, stripped from cover URIs
            app_version: Version tag written to the bundle
            cancellation_check: Optional function called between novels; raises to abort
        """
        self.library = library
        self.settings_store = settings_store
        self.storage_uri = app_storage_uri(storage_root)
        self.app_version = app_version
        self.cancellation_check = cancellation_check

    def produce_bundle(self, destination) -> Dict[str, int]:
        """
        Write a complete bundle, replacing whatever is at destination.

        Args:
            destination: Bundle directory path

        Returns:
            Dict with 'novels', 'chapters', 'categories' and 'settings' counts

        Raises:
            BundleIOError: If the destination cannot be cleared or written
            StoreError: If reading the store fails
        """
        destination = Path(destination)
        novels_dir = destination / NOVELS_ENTRY

        self._reset_destination(destination)
        try:
            novels_dir.mkdir(parents=True)
        except OSError as e:
            raise BundleIOError(f"Failed to create {novels_dir}: {e}")

        write_json(destination / VERSION_ENTRY, {'version': self.app_version})

        counts = {'novels': 0, 'chapters': 0, 'categories': 0, 'settings': 0}

        written_ids = set()
        for novel in self.library.list_novels():
            if self.cancellation_check:
                self.cancellation_check()

            chapters = self.library.list_chapters_of(novel.id)
            write_json(
                novels_dir / f"{novel.id}{RECORD_SUFFIX}",
                novel_to_record(novel, chapters, self.storage_uri)
            )
            written_ids.add(novel.id)
            counts['novels'] += 1
            counts['chapters'] += len(chapters)

        categories = self._category_records(written_ids)
        write_json(destination / CATEGORY_ENTRY, categories)
        counts['categories'] = len(categories)

        settings = snapshot_settings(self.settings_store)
        write_json(destination / SETTING_ENTRY, settings)
        counts['settings'] = len(settings)

        logger.info(
            f"Bundle written to {destination}: {counts['novels']} novels, "
            f"{counts['chapters']} chapters, {counts['categories']} categories, "
            f"{counts['settings']} settings"
        )
        return counts

    def _category_records(self, written_ids: set) -> list:
        """Flatten memberships into each category, keeping only novels in the bundle."""
        members = defaultdict(list)
        for link in self.library.list_novel_category_memberships():
            if link.novel_id in written_ids:
                members[link.category_id].append(link.novel_id)

        return [
            category_to_record(category, members.get(category.id, []))
            for category in self.library.list_categories()
        ]

    @staticmethod
    def _reset_destination(destination: Path):
        try:
            if destination.is_dir():
                shutil.rmtree(destination)
            elif destination.exists():
                destination.unlink()
        except OSError as e:
            raise BundleIOError(f"Failed to clear stale bundle at {destination}: {e}")
