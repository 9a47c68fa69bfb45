import os
import tempfile


class Config:
    """Base configuration"""

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/lnbackup.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # App private storage root; local covers are stored beneath it as file:// URIs
    STORAGE_ROOT = os.environ.get('STORAGE_ROOT') or '/data/storage'

    # Working directory for bundles being written or restored
    BACKUP_CACHE_DIR = os.environ.get('BACKUP_CACHE_DIR') or '/data/cache/BackupData'

    # Default destination for local backup archives
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/local_backups'

    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Self-host server timeouts (seconds)
    SELF_HOST_HANDSHAKE_TIMEOUT = 2.0
    SELF_HOST_TIMEOUT = float(os.environ.get('SELF_HOST_TIMEOUT', 10))

    # Scheduler
    SCHEDULER_ENABLED = True
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "lnbackup.db")}'
    STORAGE_ROOT = os.path.join(DATA_DIR, 'storage')
    BACKUP_CACHE_DIR = os.path.join(DATA_DIR, 'cache', 'BackupData')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False

    TEST_DIR = os.path.join(tempfile.gettempdir(), 'lnbackup-test')
    STORAGE_ROOT = os.path.join(TEST_DIR, 'storage')
    BACKUP_CACHE_DIR = os.path.join(TEST_DIR, 'cache', 'BackupData')
    LOCAL_BACKUP_DIR = os.path.join(TEST_DIR, 'local_backups')
    LOG_DIR = os.path.join(TEST_DIR, 'logs')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
