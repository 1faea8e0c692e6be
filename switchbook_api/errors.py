"""
Exceptions raised by the Switchbook services.

Each carries the HTTP status and JSON body the API answers with; the app
registers a single handler for ApiError so routes can let them propagate.
"""

from typing import Any, Dict, Optional

class ApiError(Exception):
    status_code = 500
    error = 'Internal Server Error'

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.error, 'message': self.message, **self.payload}

class ValidationFailed(ApiError):
    status_code = 400
    error = 'Bad Request'

class Unauthorized(ApiError):
    status_code = 401
    error = 'Unauthorized'

class NotFound(ApiError):
    status_code = 404
    error = 'Not Found'

class Conflict(ApiError):
    status_code = 409
    error = 'Conflict'

class CapacityExceeded(ApiError):
    """Per-user limits; 400 for storage totals, 409 for concurrent operations."""
    error = 'Capacity Exceeded'

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None,
                 status_code: int = 400):
        super().__init__(message, payload)
        self.status_code = status_code

class RateLimited(ApiError):
    status_code = 429
    error = 'Too Many Requests'

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None,
                 payload: Optional[Dict[str, Any]] = None):
        super().__init__(message, payload)
        self.headers = headers or {}
