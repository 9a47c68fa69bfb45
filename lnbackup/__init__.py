import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


__version__ = '2.1.0'

# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'lnbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def _ensure_directories(app):
    """Create the storage, cache and database directories the app writes to."""
    for key in ('STORAGE_ROOT', 'BACKUP_CACHE_DIR', 'LOCAL_BACKUP_DIR'):
        os.makedirs(app.config[key], exist_ok=True)

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        database_dir = os.path.dirname(database_uri.replace('sqlite:///', '', 1))
        if database_dir:
            os.makedirs(database_dir, exist_ok=True)


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from lnbackup.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    _ensure_directories(app)

    # Initialize extensions
    db.init_app(app)

    # Settings are shared by every request and background task of this app
    from lnbackup.settings_store import SettingsStore
    app.extensions['settings_store'] = SettingsStore()

    # Register blueprints
    from lnbackup.routes import backup_routes, task_routes
    app.register_blueprint(backup_routes.bp)
    app.register_blueprint(task_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'version': __version__}, 200

    # Initialize database schema and run migrations
    from lnbackup import models
    from lnbackup.migrations import init_database_schema

    # This handles both fresh installations and existing databases with migrations
    init_database_schema(app)

    # Initialize and start scheduler (only in designated worker or development child process)
    from lnbackup.scheduler import init_scheduler, start_scheduler, sync_tasks, stop_scheduler
    import atexit

    if not app.config.get('SCHEDULER_ENABLED', True):
        app.logger.info("Scheduler disabled by configuration")
        return app

    # Determine if this process should initialize the scheduler
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic:
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    if is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if should_init_scheduler:
        app.logger.info("Initializing task queue in this process...")
        init_scheduler(app)
        start_scheduler()

        # Fail tasks interrupted by a restart and requeue the ones never started
        with app.app_context():
            sync_tasks()

        atexit.register(stop_scheduler)
        app.logger.info("Task queue initialized and started successfully")
    else:
        app.logger.info("Task queue initialization skipped in this process (not designated scheduler worker)")

    return app
