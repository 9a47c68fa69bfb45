"""
Unit tests for database models (lnbackup/models.py) and migrations.

Tests SQLAlchemy models, natural key constraints and relationships.
"""

from datetime import datetime

import pytest
from sqlalchemy import text, inspect

from lnbackup.migrations import run_migrations
from lnbackup.models import Novel, Chapter, Category, NovelCategory, Setting, TaskHistory


class TestNovelModel:
    """Test Novel and Chapter models."""

    def test_create_novel_defaults(self, db):
        """Test creating a novel sets boolean and page defaults."""
        novel = Novel(plugin_id='p', path='n/1', name='Novel')
        db.session.add(novel)
        db.session.commit()

        assert novel.id is not None
        assert novel.in_library is False
        assert novel.is_local is False
        assert novel.total_pages == 0

    def test_novel_natural_key_unique(self, db):
        """Test that (plugin_id, path) must be unique."""
        db.session.add(Novel(plugin_id='p', path='n/1', name='First'))
        db.session.commit()

        db.session.add(Novel(plugin_id='p', path='n/1', name='Second'))

        with pytest.raises(Exception):  # IntegrityError
            db.session.commit()

    def test_same_path_in_other_plugin(self, db):
        """Test the same path is allowed under another plugin."""
        db.session.add_all([
            Novel(plugin_id='a', path='n/1', name='A'),
            Novel(plugin_id='b', path='n/1', name='B'),
        ])
        db.session.commit()

        assert Novel.query.count() == 2

    def test_chapter_defaults(self, db):
        """Test chapter reading state defaults."""
        novel = Novel(plugin_id='p', path='n/1', name='Novel')
        db.session.add(novel)
        db.session.flush()

        chapter = Chapter(novel_id=novel.id, path='n/1/1', name='One')
        db.session.add(chapter)
        db.session.commit()

        assert chapter.unread is True
        assert chapter.bookmark is False
        assert chapter.page == '1'
        assert chapter.position == 0

    def test_novel_cascade_delete(self, db):
        """Test deleting a novel deletes its chapters and memberships."""
        novel = Novel(plugin_id='p', path='n/1', name='Novel')
        category = Category(name='Reading')
        db.session.add_all([novel, category])
        db.session.flush()
        db.session.add_all([
            Chapter(novel_id=novel.id, path='n/1/1', name='One'),
            NovelCategory(novel_id=novel.id, category_id=category.id),
        ])
        db.session.commit()

        db.session.delete(novel)
        db.session.commit()

        assert Chapter.query.count() == 0
        assert NovelCategory.query.count() == 0
        assert Category.query.count() == 1

    def test_novel_repr(self, db):
        """Test Novel __repr__ method."""
        assert repr(Novel(plugin_id='p', path='n/1', name='Novel')) == '<Novel p:n/1>'


class TestCategoryModel:
    """Test Category and NovelCategory models."""

    def test_category_name_unique(self, db):
        """Test that category names must be unique."""
        db.session.add(Category(name='Reading'))
        db.session.commit()

        db.session.add(Category(name='Reading'))

        with pytest.raises(Exception):  # IntegrityError
            db.session.commit()

    def test_membership_pair_unique(self, db):
        """Test a novel is in a category at most once."""
        novel = Novel(plugin_id='p', path='n/1', name='Novel')
        category = Category(name='Reading')
        db.session.add_all([novel, category])
        db.session.flush()

        db.session.add(NovelCategory(novel_id=novel.id, category_id=category.id))
        db.session.commit()
        db.session.add(NovelCategory(novel_id=novel.id, category_id=category.id))

        with pytest.raises(Exception):  # IntegrityError
            db.session.commit()


class TestSettingModel:
    """Test Setting model."""

    def test_setting_updated_at_auto_set(self, db):
        """Test that updated_at is set on insert."""
        before = datetime.utcnow()
        setting = Setting(key='APP_THEME', value='"dark"')
        db.session.add(setting)
        db.session.commit()

        assert before <= setting.updated_at <= datetime.utcnow()


class TestTaskHistoryModel:
    """Test TaskHistory model."""

    def test_create_task(self, db):
        """Test creating a task record."""
        task = TaskHistory(name='LOCAL_BACKUP', payload='{"destination": "/b"}', status='queued')
        db.session.add(task)
        db.session.commit()

        assert task.created_at is not None
        assert task.cancellation_requested is False
        assert task.started_at is None

    def test_task_repr(self, db):
        """Test TaskHistory __repr__ method."""
        task = TaskHistory(name='SELF_HOST_RESTORE', payload='{}', status='running')
        assert repr(task) == '<TaskHistory SELF_HOST_RESTORE status=running>'


class TestMigrations:
    """Test additive schema migrations."""

    def test_missing_column_is_added(self, app, db):
        """Test a column from a newer release is added to an old table."""
        db.session.execute(text('DROP TABLE task_history'))
        db.session.execute(text(
            'CREATE TABLE task_history ('
            'id INTEGER PRIMARY KEY, name VARCHAR(50) NOT NULL, payload TEXT NOT NULL, '
            'status VARCHAR(20) NOT NULL, created_at DATETIME NOT NULL, started_at DATETIME, '
            'completed_at DATETIME, result_path VARCHAR(500), file_size_bytes BIGINT, '
            'error_message TEXT, logs TEXT)'
        ))
        db.session.commit()

        run_migrations(app)

        columns = {col['name'] for col in inspect(db.engine).get_columns('task_history')}
        assert 'summary' in columns
        assert 'cancellation_requested' in columns

    def test_missing_table_is_created(self, app, db):
        """Test tables introduced later are created on an existing database."""
        db.session.execute(text('DROP TABLE settings'))
        db.session.commit()

        run_migrations(app)

        assert 'settings' in inspect(db.engine).get_table_names()
