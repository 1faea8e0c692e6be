#!/usr/bin/env python3

# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Switchbook API
Flask REST API for keyboard switch collections and the community master database.
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS

from .config import get_app_config
from .database import check_connection, init_database
from .errors import ApiError, RateLimited
from .routes.admin_routes import admin_bp
from .routes.auth_routes import auth_bp
from .routes.catalog_routes import catalog_bp
from .routes.image_routes import image_bp
from .routes.master_switch_routes import master_switch_bp
from .routes.switch_routes import switch_bp
from .routes.wishlist_routes import wishlist_bp

logger = logging.getLogger(__name__)

def create_app(config_overrides: Optional[Dict[str, Any]] = None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Enable CORS for API routes; session cookies need credentials
    CORS(app, supports_credentials=True)

    app.config.update(get_app_config())
    if config_overrides:
        app.config.update(config_overrides)

    init_database(app)

    for blueprint in (auth_bp, switch_bp, image_bp, master_switch_bp,
                      admin_bp, wishlist_bp, catalog_bp):
        app.register_blueprint(blueprint, url_prefix='/api')

    @app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        try:
            connected = check_connection()
            return jsonify({
                'status': 'healthy' if connected else 'degraded',
                'database': 'connected' if connected else 'error'
            })
        except Exception as e:
            return jsonify({
                'status': 'error',
                'error': str(e)
            }), 500

    @app.route(f"{app.config['UPLOAD_URL_PREFIX'].rstrip('/')}/<path:filename>")
    def uploaded_file(filename):
        """Serve images written by the local storage backend."""
        return send_from_directory(app.config['UPLOAD_DIR'], filename)

    # Error handlers
    @app.errorhandler(ApiError)
    def api_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimited):
            for name, value in error.headers.items():
                response.headers[name] = value
        return response

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'Bad request',
            'message': str(error.description) if hasattr(error, 'description') else 'Invalid request'
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'Not found',
            'message': 'The requested resource was not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'Method not allowed',
            'message': 'The method is not allowed for the requested URL'
        }), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        return jsonify({
            'error': 'Payload too large',
            'message': 'The request body exceeds the maximum allowed size'
        }), 413

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled error: {error}")
        return jsonify({
            'error': 'Internal server error',
            'message': 'An unexpected error occurred'
        }), 500

    return app

if __name__ == '__main__':
    app = create_app()
    app.run(debug=True, host='0.0.0.0', port=5000)
