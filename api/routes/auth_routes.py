from flask import Blueprint, request, jsonify
from api.middleware.auth_middleware import AuthMiddleware
from core.dependency_container import get_service
from service.auth_service import AuthService

auth_bp = Blueprint('auth', __name__)

def get_auth_service() -> AuthService:
    return get_service('auth_service')

@auth_bp.route('/verify', methods=['POST'])
@AuthMiddleware.require_auth
def verify_credentials():
    """
    Credential check used by the relay's long-term credential callback.

    Request body:
    {
        "username": "string",
        "password": "string"
    }
    """
    data = request.get_json(silent=True) or {}

    username = data.get('username', '')
    password = data.get('password', '')
    if not username or not password:
        return jsonify({
            'error': 'Missing credentials',
            'message': 'Username and password are required'
        }), 400

    user = get_auth_service().authenticate(username, password)
    return jsonify({
        'success': True,
        'user': user.to_dict()
    }), 200
