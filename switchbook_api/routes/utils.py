"""
Request parsing helpers shared by the blueprints.
"""

import logging
from typing import Any, Dict, Tuple

from flask import current_app, jsonify, request

from ..database import db
from ..errors import ValidationFailed

logger = logging.getLogger(__name__)

def get_json_body() -> Dict[str, Any]:
    """Parsed JSON object body, or a 400 when the body is missing or not an object."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data

def get_pagination_params() -> Tuple[int, int]:
    """
    Read page and page_size from the query string.

    Raises:
        ValidationFailed: for non-numeric values or values out of range
    """
    max_page_size = current_app.config['MAX_PAGE_SIZE']
    try:
        page = int(request.args.get('page', 1))
        page_size = int(request.args.get('page_size', current_app.config['DEFAULT_PAGE_SIZE']))
    except ValueError:
        raise ValidationFailed('Invalid numeric parameter format')

    if page < 1:
        raise ValidationFailed('Page number must be >= 1')
    if page_size < 1 or page_size > max_page_size:
        raise ValidationFailed(f'Page size must be between 1 and {max_page_size}')
    return page, page_size

def server_error(action: str, error: Exception, message: str, **extra):
    """Log an unexpected failure, discard the session state and answer 500."""
    logger.error(f"Error in {action}: {error}")
    db.session.rollback()
    return jsonify({
        'error': 'Internal Server Error',
        'message': message,
        **extra
    }), 500
