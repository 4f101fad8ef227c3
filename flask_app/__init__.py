"""
Flask application factory.
"""
import logging
import os
from flask import Flask
from sqlalchemy import event


def create_app(config_name='development', config_overrides=None):
    """Create and configure the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    if config_name == 'production':
        app.config.from_object('flask_app.config.ProductionConfig')
    elif config_name == 'testing':
        app.config.from_object('flask_app.config.TestingConfig')
    else:
        app.config.from_object('flask_app.config.DevelopmentConfig')

    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    # Initialize extensions
    from flask_app.models import db
    db.init_app(app)

    # Register blueprints
    from flask_app.routes.main import main_bp
    from flask_app.routes.settings import settings_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(settings_bp, url_prefix='/settings')

    # Create database tables and initialize default settings
    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            _use_immediate_transactions(db.engine)
        db.create_all()
        _initialize_default_settings()

    return app


def _initialize_default_settings():
    """Create default ConsolidationSettings and HistorySyncStatus if none exist."""
    from flask_app.models import db, HistorySyncStatus
    from flask_app.services.config_service import ConfigService

    # Seeds the singleton from config.ini / environment on first start
    ConfigService.get_session_settings()

    if HistorySyncStatus.query.first() is None:
        default_sync_status = HistorySyncStatus()
        db.session.add(default_sync_status)
        db.session.commit()


def _use_immediate_transactions(engine):
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    SQLite ignores SELECT ... FOR UPDATE. Taking the write lock at BEGIN keeps
    a second worker process from reading a session group until the first
    one commits.
    """
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')
