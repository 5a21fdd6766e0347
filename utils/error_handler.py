"""
Error Handler for TutorQuest Platform
Centralized error taxonomy, JSON error responses and request validation
"""

from flask import jsonify
import logging
import traceback

logger = logging.getLogger(__name__)

class TutorQuestError(Exception):
    """Base exception class for TutorQuest platform"""
    def __init__(self, message, status_code=500, error_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

class InvalidArgumentError(TutorQuestError):
    """Raised when an operation receives an argument it cannot accept"""
    def __init__(self, message, field=None):
        super().__init__(message, status_code=400, error_code='INVALID_ARGUMENT')
        self.field = field

class InvalidStateError(InvalidArgumentError):
    """Raised when a quiz session is asked for a transition its state forbids"""
    def __init__(self, message, state=None):
        super().__init__(message)
        self.status_code = 409
        self.error_code = 'INVALID_STATE'
        self.state = state

class AlreadySubmittedError(TutorQuestError):
    """Raised when a quiz attempt is submitted a second time"""
    def __init__(self, message, attempt_id=None):
        super().__init__(message, status_code=409, error_code='ALREADY_SUBMITTED')
        self.attempt_id = attempt_id

class ValidationError(TutorQuestError):
    """Raised when input validation fails"""
    def __init__(self, message, field=None):
        super().__init__(message, status_code=400, error_code='VALIDATION_ERROR')
        self.field = field

class NotFoundError(TutorQuestError):
    """Raised when requested resource is not found"""
    def __init__(self, message):
        super().__init__(message, status_code=404, error_code='NOT_FOUND')

class DatabaseError(TutorQuestError):
    """Raised when database operation fails"""
    def __init__(self, message):
        super().__init__(message, status_code=500, error_code='DATABASE_ERROR')

def handle_error(error):
    """
    Central error handler that converts exceptions to JSON responses
    """
    if isinstance(error, TutorQuestError):
        if error.status_code >= 500:
            logger.error(f"TutorQuest error: {error.message}")
        else:
            logger.warning(f"TutorQuest error: {error.message}")
        return jsonify(format_error_response(error.message, error.error_code)), error.status_code

    if isinstance(error, ValueError):
        logger.warning(f"Validation error: {str(error)}")
        return jsonify(format_error_response(str(error), 'VALIDATION_ERROR')), 400

    if isinstance(error, KeyError):
        logger.warning(f"Missing key error: {str(error)}")
        return jsonify(format_error_response(f'Missing required field: {str(error)}', 'MISSING_FIELD')), 400

    # Connection problems talking to Firestore
    if 'ConnectionError' in str(type(error)) or 'TimeoutError' in str(type(error)):
        logger.error(f"Connection error: {str(error)}")
        return jsonify(format_error_response('Service temporarily unavailable', 'CONNECTION_ERROR')), 503

    logger.error(f"Unhandled error: {str(error)}")
    logger.error(traceback.format_exc())
    return jsonify(format_error_response('An unexpected error occurred', 'INTERNAL_ERROR')), 500

def validate_request_data(data, required_fields, optional_fields=None):
    """
    Validate request data against required and optional fields
    """
    if not data or not isinstance(data, dict):
        raise ValidationError("Request body cannot be empty")

    missing_fields = [field for field in required_fields if data.get(field) is None]
    if missing_fields:
        raise ValidationError(f"Missing required fields: {', '.join(missing_fields)}")

    if optional_fields:
        for field, expected_type in optional_fields.items():
            if field in data and data[field] is not None:
                if not isinstance(data[field], expected_type):
                    names = expected_type.__name__ if isinstance(expected_type, type) \
                        else ' or '.join(t.__name__ for t in expected_type)
                    raise ValidationError(f"Field '{field}' must be of type {names}", field=field)

    return True

def format_error_response(error_message, error_code=None):
    """
    Format error API response
    """
    response = {
        'status': 'error',
        'error': error_message
    }

    if error_code:
        response['error_code'] = error_code

    return response
