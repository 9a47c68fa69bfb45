"""
Bundle layout: the on-disk and on-wire shape of a backup.

A bundle is a directory with four entries:

    Version.json            {"version": "<producer app version>"}
    NovelAndChapters/       one <novel id>.json per novel, chapters inlined
    Category.json           [{"id", "name", "sort", "novelIds"}, ...]
    Setting.json            {"<key>": <scalar>, ...}

JSON records use the camelCase field names of the mobile application, so
bundles written by either side can be read by the other. Remote bundle
folders carry the BUNDLE_EXTENSION suffix.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .errors import BundleIOError


VERSION_ENTRY = 'Version.json'
NOVELS_ENTRY = 'NovelAndChapters'
CATEGORY_ENTRY = 'Category.json'
SETTING_ENTRY = 'Setting.json'

# Single-file entries, in the order they are written
FILE_ENTRIES = (VERSION_ENTRY, CATEGORY_ENTRY, SETTING_ENTRY)

BUNDLE_EXTENSION = '.backup'
RECORD_SUFFIX = '.json'

# (wire name, model attribute)
NOVEL_FIELDS = (
    ('id', 'id'),
    ('path', 'path'),
    ('pluginId', 'plugin_id'),
    ('name', 'name'),
    ('cover', 'cover'),
    ('summary', 'summary'),
    ('author', 'author'),
    ('artist', 'artist'),
    ('status', 'status'),
    ('genres', 'genres'),
    ('inLibrary', 'in_library'),
    ('isLocal', 'is_local'),
    ('totalPages', 'total_pages'),
)

CHAPTER_FIELDS = (
    ('id', 'id'),
    ('novelId', 'novel_id'),
    ('path', 'path'),
    ('name', 'name'),
    ('releaseTime', 'release_time'),
    ('bookmark', 'bookmark'),
    ('unread', 'unread'),
    ('readTime', 'read_time'),
    ('isDownloaded', 'is_downloaded'),
    ('updatedTime', 'updated_time'),
    ('chapterNumber', 'chapter_number'),
    ('page', 'page'),
    ('progress', 'progress'),
    ('position', 'position'),
)

# Older bundles store these as 0/1
BOOLEAN_ATTRS = frozenset({'in_library', 'is_local', 'bookmark', 'unread', 'is_downloaded'})

# Store-local identity, never written back on restore
LOCAL_ID_ATTRS = frozenset({'id', 'novel_id'})


def app_storage_uri(storage_root: str) -> str:
    """URI prefix of files inside the app's private storage root."""
    return 'file://' + str(storage_root).rstrip('/')


def portable_cover(cover: Optional[str], storage_uri: str) -> Optional[str]:
    """Strip the storage URI prefix so the cover reference survives a new install."""
    if cover and (cover == storage_uri or cover.startswith(storage_uri + '/')):
        return cover[len(storage_uri):]
    return cover


def absolute_cover(cover: Optional[str], storage_uri: str) -> Optional[str]:
    """Re-anchor a portable cover reference under the current storage root."""
    if not cover or '://' in cover or cover.startswith('data:'):
        return cover
    if not cover.startswith('/'):
        cover = '/' + cover
    return storage_uri + cover


def _to_record(row, fields) -> Dict[str, Any]:
    return {wire: getattr(row, attr) for wire, attr in fields}


def _from_record(record: Dict[str, Any], fields) -> Dict[str, Any]:
    values = {}
    for wire, attr in fields:
        if wire not in record or attr in LOCAL_ID_ATTRS:
            continue
        value = record[wire]
        if attr in BOOLEAN_ATTRS and value is not None:
            value = bool(value)
        values[attr] = value
    return values


def _require_text(values: Dict[str, Any], attr: str, wire: str, what: str):
    value = values.get(attr)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{what} record has no {wire}")


def chapter_to_record(chapter) -> Dict[str, Any]:
    return _to_record(chapter, CHAPTER_FIELDS)


def novel_to_record(novel, chapters: Iterable, storage_uri: str) -> Dict[str, Any]:
    """Build the self-contained NovelAndChapters record for one novel."""
    record = _to_record(novel, NOVEL_FIELDS)
    record['cover'] = portable_cover(novel.cover, storage_uri)
    record['chapters'] = [chapter_to_record(chapter) for chapter in chapters]
    return record


def category_to_record(category, novel_ids: Iterable[int]) -> Dict[str, Any]:
    return {
        'id': category.id,
        'name': category.name,
        'sort': category.sort,
        'novelIds': list(novel_ids),
    }


def record_to_novel_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a novel record to model attributes.

    Raises:
        ValueError: If the record lacks its natural key or name
    """
    if not isinstance(record, dict):
        raise ValueError(f"Novel record must be an object, got {type(record).__name__}")

    values = _from_record(record, NOVEL_FIELDS)
    _require_text(values, 'plugin_id', 'pluginId', 'Novel')
    _require_text(values, 'path', 'path', 'Novel')
    _require_text(values, 'name', 'name', 'Novel')
    return values


def record_to_chapter_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a chapter record to model attributes.

    Raises:
        ValueError: If the record lacks its path or name
    """
    if not isinstance(record, dict):
        raise ValueError(f"Chapter record must be an object, got {type(record).__name__}")

    values = _from_record(record, CHAPTER_FIELDS)
    _require_text(values, 'path', 'path', 'Chapter')
    _require_text(values, 'name', 'name', 'Chapter')
    return values


def write_json(path: Path, data: Any):
    """
    Write one bundle entry.

    Raises:
        BundleIOError: If the file cannot be written
    """
    try:
        Path(path).write_text(json.dumps(data, ensure_ascii=False), encoding='utf-8')
    except OSError as e:
        raise BundleIOError(f"Failed to write {path}: {e}")


def read_json(path: Path) -> Any:
    """
    Read one bundle entry.

    Raises:
        BundleIOError: If the file cannot be read
        ValueError: If the file is not valid JSON
    """
    try:
        content = Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise BundleIOError(f"Failed to read {path}: {e}")
    return json.loads(content)
