from flask import jsonify
from core.logging_config import get_logger
from core.exceptions import (
    RelayQuotaError,
    UserAlreadyExistsError,
    NotFoundError,
    UserDisabledError,
    QuotaExceededError,
    BandwidthExceededError,
    DurationExceededError,
    ConflictError,
    StoreUnavailableError,
    DatabaseError,
    ConfigurationError,
    ValidationError,
    AuthenticationError
)

logger = get_logger(__name__)

# (exception, error label, status); Flask picks the most specific class
ERROR_STATUS = (
    (UserAlreadyExistsError, 'User already exists', 409),
    (NotFoundError, 'Not found', 404),
    (UserDisabledError, 'User disabled', 403),
    (BandwidthExceededError, 'Limit exceeded', 429),
    (DurationExceededError, 'Limit exceeded', 429),
    (ValidationError, 'Validation error', 400),
    (AuthenticationError, 'Authentication failed', 401),
    (ConfigurationError, 'Configuration error', 500),
    (ConflictError, 'Store unavailable', 503),
    (StoreUnavailableError, 'Store unavailable', 503),
    (DatabaseError, 'Database error', 500),
    (RelayQuotaError, 'Relay quota error', 500),
)

def error_response(error: str, message: str, status: int, **extra):
    body = {'error': error, 'message': message}
    body.update(extra)
    return jsonify(body), status

class ErrorHandler:
    """
    Centralized translation of service exceptions into JSON error responses.
    """

    @staticmethod
    def init_app(app) -> None:
        for exc_class, label, status in ERROR_STATUS:
            app.register_error_handler(exc_class, ErrorHandler._make_handler(label, status))

        @app.errorhandler(QuotaExceededError)
        def handle_quota_exceeded(e):
            return error_response('Quota exceeded', str(e), 429,
                                  current_sessions=e.current, max_sessions=e.limit)

        @app.errorhandler(404)
        def handle_not_found(e):
            return error_response('Not found', 'The requested endpoint does not exist', 404)

        @app.errorhandler(405)
        def handle_method_not_allowed(e):
            return error_response('Method not allowed',
                                  'The HTTP method is not allowed for this endpoint', 405)

    @staticmethod
    def _make_handler(label: str, status: int):
        def handler(e):
            if status >= 500:
                logger.error("Request failed", error=str(e), error_type=type(e).__name__, status=status)
            return error_response(label, str(e), status)
        return handler
