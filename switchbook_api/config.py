"""
Configuration management for the Switchbook API.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote_plus
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env file if it exists (won't override existing environment variables)
# This allows .env files in remote environments while keeping db_config.json for local dev
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path, override=False)

# Limits applied by the bulk ingestion endpoints
BULK_CONFIG = {
    'MAX_SWITCHES_PER_REQUEST': 500,
    'MAX_TOTAL_SWITCHES_PER_USER': 25000,
    'MAX_CONCURRENT_OPERATIONS': 3,
    'SUB_BATCH_SIZE': 25,
    'LARGE_BATCH_THRESHOLD': 1000,
    'LARGE_BATCH_DELAY_SECONDS': 0.01,
    'MAX_WORKERS': 4,
}

# Limits applied by the image pipeline
IMAGE_CONFIG = {
    'MAX_FILE_SIZE': 5 * 1024 * 1024,
    'MAX_USER_STORAGE': 100 * 1024 * 1024,
    'MAX_IMAGES_PER_SWITCH': 10,
    'MAX_DIMENSION': 4000,
    'THUMBNAIL_SIZE': (400, 400),
    'MEDIUM_SIZE': (800, 800),
    'JPEG_QUALITY': 85,
    'ALLOWED_MIME_TYPES': [
        'image/jpeg', 'image/jpg', 'image/png', 'image/webp', 'image/heic', 'image/heif'
    ],
    'ALLOWED_EXTENSIONS': ['.jpg', '.jpeg', '.png', '.webp', '.heic', '.heif'],
    'UPLOADS_PER_MINUTE': 10,
    'URL_VALIDATIONS_PER_MINUTE': 20,
}

def get_database_config() -> Optional[Dict[str, str]]:
    """
    Load database configuration from environment variables, .env file, or db_config.json.

    Priority order:
    1. Environment variables (already set in OS environment)
    2. .env file (for remote environments)
    3. db_config.json (for local development)

    Returns:
        Dict with database connection parameters or None if config not found
    """
    if all(os.environ.get(key) for key in ['DB_HOST', 'DB_NAME', 'DB_USER', 'DB_PASSWORD']):
        return {
            'host': os.environ['DB_HOST'],
            'port': os.environ.get('DB_PORT', '5432'),
            'database': os.environ['DB_NAME'],
            'user': os.environ['DB_USER'],
            'password': os.environ['DB_PASSWORD']
        }

    config_path = Path(__file__).parent.parent / 'db_config.json'
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, FileNotFoundError):
            pass

    return None

def get_database_url() -> str:
    """
    Build the SQLAlchemy database URL.

    DATABASE_URL wins when set; otherwise the connection parameters from
    get_database_config() are turned into a psycopg2 URL. Without either a
    local SQLite file is used so the API can still start for development.
    """
    url = os.environ.get('DATABASE_URL')
    if url:
        if url.startswith('postgres://'):
            url = 'postgresql+psycopg2://' + url[len('postgres://'):]
        elif url.startswith('postgresql://'):
            url = 'postgresql+psycopg2://' + url[len('postgresql://'):]
        return url

    config = get_database_config()
    if config:
        return (
            f"postgresql+psycopg2://{quote_plus(config['user'])}:{quote_plus(config['password'])}"
            f"@{config['host']}:{config.get('port', '5432')}/{config['database']}"
        )

    logger.warning("Database configuration not found, falling back to local SQLite database")
    return f"sqlite:///{Path(__file__).parent.parent / 'switchbook.db'}"

def get_pagination_config() -> Dict[str, int]:
    """
    Get pagination configuration from environment variables.

    Returns:
        Dict with pagination settings
    """
    return {
        'max_page_size': int(os.environ.get('MAX_PAGE_SIZE', 50)),
        'default_page_size': int(os.environ.get('DEFAULT_PAGE_SIZE', 20))
    }

def get_upload_config() -> Dict[str, str]:
    """Storage directory and public URL prefix for uploaded images."""
    return {
        'upload_dir': os.environ.get('UPLOAD_DIR', str(Path(__file__).parent.parent / 'uploads')),
        'url_prefix': os.environ.get('UPLOAD_URL_PREFIX', '/uploads')
    }

def get_cloudinary_config() -> Optional[Dict[str, str]]:
    """Cloudinary credentials, or None when image storage stays on local disk."""
    keys = ['CLOUDINARY_CLOUD_NAME', 'CLOUDINARY_API_KEY', 'CLOUDINARY_API_SECRET']
    if not all(os.environ.get(key) for key in keys):
        return None
    return {
        'cloudinary_cloud_name': os.environ['CLOUDINARY_CLOUD_NAME'],
        'cloudinary_api_key': os.environ['CLOUDINARY_API_KEY'],
        'cloudinary_api_secret': os.environ['CLOUDINARY_API_SECRET']
    }

def get_mail_config() -> Optional[Dict[str, Any]]:
    """SMTP settings for notification emails, or None when email is disabled."""
    if not os.environ.get('SMTP_HOST'):
        return None
    return {
        'host': os.environ['SMTP_HOST'],
        'port': int(os.environ.get('SMTP_PORT', 587)),
        'user': os.environ.get('SMTP_USER'),
        'password': os.environ.get('SMTP_PASSWORD'),
        'sender': os.environ.get('MAIL_FROM', 'Switchbook <noreply@switchbook.app>'),
        'base_url': os.environ.get('APP_BASE_URL', 'http://localhost:3000')
    }

def get_app_config() -> Dict[str, Any]:
    """Flask configuration assembled from the environment."""
    pagination = get_pagination_config()
    upload = get_upload_config()
    return {
        'SECRET_KEY': os.environ.get('SECRET_KEY', 'dev-secret-key-change-me'),
        'SQLALCHEMY_DATABASE_URI': get_database_url(),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MAX_PAGE_SIZE': pagination['max_page_size'],
        'DEFAULT_PAGE_SIZE': pagination['default_page_size'],
        'UPLOAD_DIR': upload['upload_dir'],
        'UPLOAD_URL_PREFIX': upload['url_prefix'],
        'CLOUDINARY': get_cloudinary_config(),
        'MAIL': get_mail_config(),
        'GITHUB_TOKEN': os.environ.get('GITHUB_TOKEN'),
        'MAX_CONTENT_LENGTH': IMAGE_CONFIG['MAX_FILE_SIZE'] + 1024 * 1024,
    }
