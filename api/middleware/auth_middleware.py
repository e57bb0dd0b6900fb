import hmac
import uuid
from functools import wraps
from flask import request, jsonify, current_app, g
from core.logging_config import bind_request_context, clear_request_context

API_KEY_HEADER = 'X-API-Key'
CONFIG_KEY = 'RELAY_API_KEY'

def _reject(error: str, message: str, status: int):
    return jsonify({'error': error, 'message': message}), status

class AuthMiddleware:
    """
    Shared-secret authentication between the relay workers / admin tooling
    and this API, plus per-request log context.
    """

    @staticmethod
    def init_app(app, api_key: str) -> None:
        if not api_key:
            raise RuntimeError('RELAY_API_KEY is required to serve the API')
        app.config[CONFIG_KEY] = api_key

        @app.before_request
        def _bind_request():
            g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex
            bind_request_context(request_id=g.request_id, remote_addr=request.remote_addr,
                                 path=request.path)

        @app.teardown_request
        def _unbind_request(exc):
            clear_request_context()

    @staticmethod
    def require_auth(f):
        """Reject the request unless it carries the configured API key."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            provided = request.headers.get(API_KEY_HEADER)
            if not provided:
                return _reject('API key required', f'Please provide {API_KEY_HEADER} header', 401)

            expected = current_app.config.get(CONFIG_KEY)
            if not expected:
                return _reject('API not configured', 'API key not configured on server', 500)

            if not hmac.compare_digest(provided.encode(), expected.encode()):
                return _reject('Invalid API key', 'The provided API key is invalid', 401)

            return f(*args, **kwargs)
        return decorated_function
