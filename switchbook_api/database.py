"""
Database setup and connection utilities for the Switchbook API.
"""

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)

db = SQLAlchemy()

def get_engine_options(database_url: str) -> Dict[str, Any]:
    """Connection pool settings for the configured database."""
    if database_url.startswith('postgresql'):
        return {
            'pool_size': 10,
            'max_overflow': 5,
            'pool_pre_ping': True
        }
    return {}

def init_database(app):
    """Bind the SQLAlchemy extension to the app and create missing tables."""
    app.config.setdefault(
        'SQLALCHEMY_ENGINE_OPTIONS',
        get_engine_options(app.config['SQLALCHEMY_DATABASE_URI'])
    )
    db.init_app(app)

    # Import models so their tables are registered before create_all
    from . import models  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

def check_connection() -> bool:
    """Run a trivial query to confirm the database is reachable."""
    try:
        db.session.execute(text('SELECT 1'))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db.session.rollback()
        return False
