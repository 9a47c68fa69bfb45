"""
Shared pytest fixtures for lnbackup tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Library, settings and task fixtures
- A fake self-host server on an httpx.MockTransport
- Mock scheduler
"""

import os
import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from lnbackup import create_app, db as _db
from lnbackup.library import LibraryStore
from lnbackup.models import Novel, Chapter, Category, NovelCategory, TaskHistory
from lnbackup.settings_store import SettingsStore


@pytest.fixture(scope='function')
def app():
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database and per-test storage directories.
    """
    temp_dir = tempfile.mkdtemp()

    app = create_app('testing')

    app.config.update({
        'STORAGE_ROOT': os.path.join(temp_dir, 'storage'),
        'BACKUP_CACHE_DIR': os.path.join(temp_dir, 'cache', 'BackupData'),
        'LOCAL_BACKUP_DIR': os.path.join(temp_dir, 'local_backups'),
    })

    os.makedirs(app.config['STORAGE_ROOT'], exist_ok=True)
    os.makedirs(app.config['LOCAL_BACKUP_DIR'], exist_ok=True)

    yield app

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app, db):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def library(db):
    """Library store on the test database session."""
    return LibraryStore()


@pytest.fixture(scope='function')
def settings_store(app, db):
    """The app's settings store."""
    return app.extensions['settings_store']


@pytest.fixture(scope='function')
def storage_uri(app):
    """file:// prefix of the test storage root."""
    return 'file://' + app.config['STORAGE_ROOT']


@pytest.fixture(scope='function')
def sample_library(db, storage_uri):
    """
    Create a small library.

    - Novel 'Overlord' (local cover, 2 chapters, one bookmarked) in 'Reading'
    - Novel 'Mushoku Tensei' (remote cover, 1 chapter) in 'Reading' and 'Finished'
    - Empty category 'Dropped'
    """
    overlord = Novel(
        plugin_id='novelupdates',
        path='series/overlord',
        name='Overlord',
        cover=f'{storage_uri}/Novels/novelupdates/1/cover.png',
        author='Kugane Maruyama',
        genres='Action,Fantasy',
        status='Ongoing',
        in_library=True,
        total_pages=1
    )
    mushoku = Novel(
        plugin_id='royalroad',
        path='fiction/mushoku',
        name='Mushoku Tensei',
        cover='https://example.com/covers/mushoku.jpg',
        in_library=True
    )
    _db.session.add_all([overlord, mushoku])
    _db.session.flush()

    _db.session.add_all([
        Chapter(novel_id=overlord.id, path='series/overlord/1', name='Chapter 1',
                position=0, unread=False, bookmark=True, progress=100),
        Chapter(novel_id=overlord.id, path='series/overlord/2', name='Chapter 2',
                position=1, unread=True, progress=40),
        Chapter(novel_id=mushoku.id, path='fiction/mushoku/1', name='Prologue',
                position=0, is_downloaded=True),
    ])

    reading = Category(name='Reading', sort=1)
    finished = Category(name='Finished', sort=2)
    dropped = Category(name='Dropped', sort=3)
    _db.session.add_all([reading, finished, dropped])
    _db.session.flush()

    _db.session.add_all([
        NovelCategory(novel_id=overlord.id, category_id=reading.id),
        NovelCategory(novel_id=mushoku.id, category_id=reading.id),
        NovelCategory(novel_id=mushoku.id, category_id=finished.id),
    ])
    _db.session.commit()

    return {'overlord': overlord, 'mushoku': mushoku,
            'reading': reading, 'finished': finished, 'dropped': dropped}


@pytest.fixture(scope='function')
def sample_settings(settings_store):
    """Populate a few regular settings plus every excluded key."""
    values = {
        'APP_THEME': 'dark',
        'READER_FONT_SIZE': 16,
        'READER_LINE_HEIGHT': 1.5,
        'SHOW_DOWNLOAD_BADGES': False,
        'APP_SERVICE': 'queue-state',
        'TRACKER': 'tracker-session',
        'SELF_HOST_BACKUP': 'http://192.168.1.10:8000',
        'LAST_UPDATE_TIME': '2024-01-15T12:00:00Z',
    }
    for key, value in values.items():
        settings_store.set_any(key, value)
    return values


@pytest.fixture
def bundle_dir(tmp_path):
    """Empty directory path for a bundle."""
    return tmp_path / 'bundle'


class FakeSelfHost:
    """
    In-memory self-host server.

    Files live in a dict keyed by the folder tree path plus file name.
    Every request is recorded in `requests` as (method, path, body).
    """

    def __init__(self, name='LNReader'):
        self.name = name
        self.files = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))

        if request.method == 'GET':
            return httpx.Response(200, json={'name': self.name})

        endpoint = request.url.path.rstrip('/').rsplit('/', 1)[-1]
        folder = '/'.join(body['folderTree'])

        if endpoint == 'upload':
            self.files[f"{folder}/{body['name']}"] = body['content']
            return httpx.Response(200, json={})

        if endpoint == 'download':
            key = f"{folder}/{body['name']}"
            if key not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, json={'content': self.files[key]})

        if endpoint == 'list':
            prefix = f"{folder}/" if folder else ''
            names = set()
            for key in self.files:
                if key.startswith(prefix):
                    names.add(key[len(prefix):].split('/', 1)[0])
            if folder and not names:
                return httpx.Response(404)
            return httpx.Response(200, json=sorted(names))

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def endpoints(self):
        return [path for _, path, _ in self.requests]


@pytest.fixture
def self_host():
    """Fake LNReader self-host server."""
    return FakeSelfHost()


@pytest.fixture
def task_factory(db):
    """Create TaskHistory rows."""
    def _create(name='LOCAL_BACKUP', payload=None, status='queued', **fields):
        task = TaskHistory(
            name=name,
            payload=json.dumps(payload if payload is not None else {'destination': '/tmp/backups'}),
            status=status,
            **fields
        )
        db.session.add(task)
        db.session.commit()
        return task
    return _create


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('lnbackup.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
