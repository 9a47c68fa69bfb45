from datetime import datetime
from lnbackup import db


class Novel(db.Model):
    """Novel in the user's library, identified across stores by (plugin_id, path)"""
    __tablename__ = 'novels'
    __table_args__ = (
        db.UniqueConstraint('plugin_id', 'path', name='uq_novels_plugin_path'),
    )

    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(500), nullable=False)  # Identifier inside the source plugin
    plugin_id = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(500), nullable=False)
    cover = db.Column(db.String(1000))  # file:// URI under STORAGE_ROOT or remote URL
    summary = db.Column(db.Text)
    author = db.Column(db.String(255))
    artist = db.Column(db.String(255))
    status = db.Column(db.String(50))
    genres = db.Column(db.Text)
    in_library = db.Column(db.Boolean, default=False, nullable=False)
    is_local = db.Column(db.Boolean, default=False, nullable=False)
    total_pages = db.Column(db.Integer, default=0, nullable=False)

    # Relationships
    chapters = db.relationship('Chapter', back_populates='novel', cascade='all, delete-orphan', lazy='dynamic')
    category_links = db.relationship('NovelCategory', back_populates='novel', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Novel {self.plugin_id}:{self.path}>'


class Chapter(db.Model):
    """Chapter of a novel with its reading progress"""
    __tablename__ = 'chapters'
    __table_args__ = (
        db.UniqueConstraint('novel_id', 'path', name='uq_chapters_novel_path'),
    )

    id = db.Column(db.Integer, primary_key=True)
    novel_id = db.Column(db.Integer, db.ForeignKey('novels.id'), nullable=False)
    path = db.Column(db.String(500), nullable=False)
    name = db.Column(db.String(500), nullable=False)
    release_time = db.Column(db.String(100))
    bookmark = db.Column(db.Boolean, default=False, nullable=False)
    unread = db.Column(db.Boolean, default=True, nullable=False)
    read_time = db.Column(db.String(100))
    is_downloaded = db.Column(db.Boolean, default=False, nullable=False)
    updated_time = db.Column(db.String(100))
    chapter_number = db.Column(db.Float)
    page = db.Column(db.String(50), default='1', nullable=False)
    progress = db.Column(db.Integer)  # Percent read, 0-100
    position = db.Column(db.Integer, default=0, nullable=False)  # Order within the novel

    # Relationship
    novel = db.relationship('Novel', back_populates='chapters')

    def __repr__(self):
        return f'<Chapter novel_id={self.novel_id} path={self.path}>'


class Category(db.Model):
    """User-defined library category"""
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    sort = db.Column(db.Integer, default=0, nullable=False)

    # Relationship
    novel_links = db.relationship('NovelCategory', back_populates='category', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Category {self.name}>'


class NovelCategory(db.Model):
    """Many-to-many membership of novels in categories"""
    __tablename__ = 'novel_categories'
    __table_args__ = (
        db.UniqueConstraint('novel_id', 'category_id', name='uq_novel_categories_pair'),
    )

    id = db.Column(db.Integer, primary_key=True)
    novel_id = db.Column(db.Integer, db.ForeignKey('novels.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=False)

    # Relationships
    novel = db.relationship('Novel', back_populates='category_links')
    category = db.relationship('Category', back_populates='novel_links')

    def __repr__(self):
        return f'<NovelCategory novel_id={self.novel_id} category_id={self.category_id}>'


class Setting(db.Model):
    """Application setting; value holds a JSON-encoded scalar"""
    __tablename__ = 'settings'

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<Setting {self.key}>'


class TaskHistory(db.Model):
    """Background backup/restore task and its execution record"""
    __tablename__ = 'task_history'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)  # LOCAL_BACKUP, LOCAL_RESTORE, SELF_HOST_BACKUP, SELF_HOST_RESTORE
    payload = db.Column(db.Text, nullable=False)  # JSON string
    status = db.Column(db.String(20), nullable=False)  # queued, running, succeeded, failed, cancelling, cancelled
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    result_path = db.Column(db.String(500))  # Archive written by a local backup
    file_size_bytes = db.Column(db.BigInteger)
    summary = db.Column(db.Text)  # JSON restore summary
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs
    cancellation_requested = db.Column(db.Boolean, default=False, nullable=False)

    def __repr__(self):
        return f'<TaskHistory {self.name} status={self.status}>'
