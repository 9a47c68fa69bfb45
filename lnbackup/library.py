"""
Row-level access to the library tables.

Backups read through the list_* methods; restores write through the
upsert_* methods, which match rows by natural key (plugin id + path for
novels, novel + path for chapters, name for categories) and never rely on
local integer ids being stable between stores.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from lnbackup import db
from lnbackup.models import Novel, Chapter, Category, NovelCategory
from lnbackup.backup.errors import StoreError

logger = logging.getLogger(__name__)


class LibraryStore:
    """Library store backed by the application database session."""

    def __init__(self, session=None):
        self.session = session or db.session

    def list_novels(self) -> List[Novel]:
        try:
            return self.session.query(Novel).order_by(Novel.id).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list novels: {e}")

    def list_chapters_of(self, novel_id: int) -> List[Chapter]:
        try:
            return (
                self.session.query(Chapter)
                .filter(Chapter.novel_id == novel_id)
                .order_by(Chapter.position, Chapter.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list chapters of novel {novel_id}: {e}")

    def list_categories(self) -> List[Category]:
        try:
            return self.session.query(Category).order_by(Category.sort, Category.id).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list categories: {e}")

    def list_novel_category_memberships(self) -> List[NovelCategory]:
        try:
            return self.session.query(NovelCategory).order_by(NovelCategory.id).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list category memberships: {e}")

    def find_novel(self, plugin_id: str, path: str) -> Optional[Novel]:
        try:
            return self.session.query(Novel).filter_by(plugin_id=plugin_id, path=path).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up novel {plugin_id}:{path}: {e}")

    def upsert_novel_and_chapters(self, novel_fields: Dict[str, Any],
                                  chapters: Iterable[Dict[str, Any]]) -> Novel:
        """
        Insert or update a novel and its chapters in one transaction.

        Args:
            novel_fields: Novel column values; must contain plugin_id and path
            chapters: Chapter column values; each must contain path

        Returns:
            The stored Novel (new or existing)

        Raises:
            StoreError: If the write fails; the transaction is rolled back
        """
        try:
            novel = self.session.query(Novel).filter_by(
                plugin_id=novel_fields['plugin_id'],
                path=novel_fields['path']
            ).first()

            if novel is None:
                novel = Novel(plugin_id=novel_fields['plugin_id'], path=novel_fields['path'])
                self.session.add(novel)

            for attr, value in novel_fields.items():
                setattr(novel, attr, value)

            # Assigns novel.id for new rows
            self.session.flush()

            for chapter_fields in chapters:
                chapter = self.session.query(Chapter).filter_by(
                    novel_id=novel.id,
                    path=chapter_fields['path']
                ).first()

                if chapter is None:
                    chapter = Chapter(novel_id=novel.id, path=chapter_fields['path'])
                    self.session.add(chapter)

                for attr, value in chapter_fields.items():
                    setattr(chapter, attr, value)

            self.session.commit()
            return novel

        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to store novel {novel_fields.get('plugin_id')}:{novel_fields.get('path')}: {e}")

    def upsert_category(self, name: str, sort: Optional[int] = None,
                        novel_ids: Iterable[int] = ()) -> Category:
        """
        Insert or update a category by name and add its novel memberships.

        Existing memberships are kept; only missing ones are added.

        Args:
            name: Category name (natural key)
            sort: Sort order; left unchanged when None
            novel_ids: Local novel ids to add to the category

        Returns:
            The stored Category

        Raises:
            StoreError: If the write fails; the transaction is rolled back
        """
        try:
            category = self.session.query(Category).filter_by(name=name).first()

            if category is None:
                category = Category(name=name, sort=sort if sort is not None else 0)
                self.session.add(category)
            elif sort is not None:
                category.sort = sort

            self.session.flush()

            existing = {
                link.novel_id
                for link in self.session.query(NovelCategory).filter_by(category_id=category.id)
            }

            for novel_id in novel_ids:
                if novel_id in existing:
                    continue
                self.session.add(NovelCategory(novel_id=novel_id, category_id=category.id))
                existing.add(novel_id)

            self.session.commit()
            return category

        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Failed to store category {name}: {e}")
