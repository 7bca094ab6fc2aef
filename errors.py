from flask import jsonify, request
from flask_limiter.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException
from models import db
import logging

logger = logging.getLogger(__name__)

# ============================================
# 錯誤分類
# ============================================

class APIError(Exception):
    """所有會直接回傳給前端的錯誤"""
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(APIError):
    status_code = 400
    message = 'Validation failed'


class AuthError(APIError):
    status_code = 401
    message = 'Unauthorized'


class Forbidden(APIError):
    status_code = 403
    message = 'Forbidden'


class NotFound(APIError):
    status_code = 404
    message = 'Resource not found'


class Conflict(APIError):
    status_code = 409
    message = 'Resource already exists'


class InternalError(APIError):
    status_code = 500
    message = 'Internal server error'

# ============================================
# 資料庫錯誤轉換
# ============================================

PG_UNIQUE_VIOLATION = '23505'
PG_FOREIGN_KEY_VIOLATION = '23503'
PG_NOT_NULL_VIOLATION = '23502'
PG_CHECK_VIOLATION = '23514'


def translate_integrity_error(error, conflict_message=None, missing_message=None):
    """
    把 IntegrityError 轉成對應的 APIError

    PostgreSQL 看 pgcode,SQLite 沒有錯誤碼只能看訊息內容
    """
    orig = getattr(error, 'orig', error)
    code = getattr(orig, 'pgcode', None)
    text = str(orig)

    if code == PG_UNIQUE_VIOLATION or 'UNIQUE constraint failed' in text:
        return Conflict(conflict_message)
    if code == PG_FOREIGN_KEY_VIOLATION or 'FOREIGN KEY constraint failed' in text:
        return NotFound(missing_message)
    if code in (PG_NOT_NULL_VIOLATION, PG_CHECK_VIOLATION) \
            or 'NOT NULL constraint failed' in text or 'CHECK constraint failed' in text:
        return ValidationError('Invalid or missing field value')

    logger.error(f"Unrecognized integrity error: {text}")
    return InternalError()

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):
    """把錯誤統一轉成 {'error': message} 的 JSON"""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        if error.status_code >= 500:
            db.session.rollback()
            logger.error(f"{error.__class__.__name__} on {request.method} {request.path}: {error.message}")
        elif error.status_code in (401, 403):
            logger.warning(f"{error.__class__.__name__} on {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        logger.warning(f"Integrity error on {request.method} {request.path}: {error.orig}")
        api_error = translate_integrity_error(error)
        return jsonify(api_error.to_dict()), api_error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'error': 'The request is malformed or invalid'}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'The requested resource does not exist'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'The HTTP method is not allowed for this endpoint'}), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        return jsonify({'error': 'Uploaded file is too large'}), 413

    @app.errorhandler(RateLimitExceeded)
    def rate_limit_exceeded(error):
        logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({'error': 'Too many requests. Please try again later.'}), 429

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """
        最後的防線,不把細節洩漏給前端

        其他 HTTPException 照原本的狀態碼回傳
        """
        if isinstance(error, HTTPException):
            return jsonify({'error': error.description}), error.code

        db.session.rollback()
        logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
