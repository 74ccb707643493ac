import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from app_models import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Failure rendered as the JSON error envelope"""

    def __init__(self, message, status_code=400, errors=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors

    def to_response(self):
        payload = {'success': False, 'error': self.message}
        if self.errors:
            payload['errors'] = self.errors
        return jsonify(payload), self.status_code


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        if error.status_code >= 500:
            logger.error("API error: %s", error.message)
        return error.to_response()

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if error.code == 413:
            message = f"File too large. Maximum upload size is {app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)}MB"
        else:
            message = error.description
        return ApiError(message, error.code).to_response()

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception("Unhandled error: %s", error)
        return ApiError('Internal server error', 500).to_response()
