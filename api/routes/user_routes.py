from flask import Blueprint, request, jsonify
from api.middleware.auth_middleware import AuthMiddleware
from core.dependency_container import get_service
from core.exceptions import ValidationError
from service.user_service import UserService
from service.auth_service import AuthService

user_bp = Blueprint('users', __name__)

def get_user_service() -> UserService:
    return get_service('user_service')

def get_auth_service() -> AuthService:
    return get_service('auth_service')

def _require_json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('body', None, 'A JSON object is required')
    return data

@user_bp.route('/', methods=['POST'])
@AuthMiddleware.require_auth
def create_user():
    """
    Register a relay user.

    Request body:
    {
        "username": "string",
        "password": "string",
        "enabled": bool (optional, default true),
        "quota": {"max_sessions": int, "max_bandwidth": int, "max_duration": int}
                 (optional; omitted = default policy, null = unlimited),
        "metadata": {...} (optional)
    }
    """
    data = _require_json()

    if not data.get('username') or not data.get('password'):
        return jsonify({
            'error': 'Missing required field',
            'message': 'username and password are required'
        }), 400
    if not isinstance(data['username'], str) or not isinstance(data['password'], str):
        raise ValidationError('username', data['username'], 'username and password must be strings')

    user_service = get_user_service()
    if 'quota' not in data:
        quota = user_service.default_quota()
    elif data['quota'] is None:
        quota = None
    elif isinstance(data['quota'], dict):
        quota = user_service.build_quota(data['quota'])
    else:
        raise ValidationError('quota', data['quota'], 'Must be an object or null')

    password_hash = get_auth_service().hash_password(data['password'])
    user = user_service.create_user(
        data['username'].strip(),
        password_hash,
        quota=quota,
        metadata=data.get('metadata'),
        enabled=bool(data.get('enabled', True))
    )

    return jsonify({
        'message': f'User "{user.username}" created successfully',
        'user': user.to_dict()
    }), 201

@user_bp.route('/', methods=['GET'])
@AuthMiddleware.require_auth
def list_users():
    """List users, newest first."""
    try:
        offset = int(request.args.get('offset', 0))
        limit = int(request.args.get('limit', 100))
    except ValueError:
        return jsonify({
            'error': 'Invalid pagination',
            'message': 'offset and limit must be integers'
        }), 400

    users = get_user_service().list_users(offset, limit)
    return jsonify({
        'users': [user.to_dict() for user in users],
        'offset': offset,
        'limit': limit
    }), 200

@user_bp.route('/<username>', methods=['GET'])
@AuthMiddleware.require_auth
def get_user(username: str):
    user = get_user_service().get_user(username)
    return jsonify({'user': user.to_dict()}), 200

@user_bp.route('/<username>', methods=['DELETE'])
@AuthMiddleware.require_auth
def delete_user(username: str):
    """Remove a user and any sessions still open for it."""
    get_user_service().delete_user(username)
    return jsonify({
        'message': f'User "{username}" removed successfully',
        'username': username
    }), 200

@user_bp.route('/<username>/enabled', methods=['PUT'])
@AuthMiddleware.require_auth
def set_enabled(username: str):
    data = _require_json()
    if not isinstance(data.get('enabled'), bool):
        return jsonify({
            'error': 'Invalid value',
            'message': 'enabled must be a boolean'
        }), 400

    get_user_service().set_enabled(username, data['enabled'])
    return jsonify({
        'message': f'User "{username}" {"enabled" if data["enabled"] else "disabled"}',
        'username': username,
        'enabled': data['enabled']
    }), 200

@user_bp.route('/<username>/quota', methods=['PUT'])
@AuthMiddleware.require_auth
def set_quota(username: str):
    """
    Create or replace the quota policy of a user.

    Request body:
    {
        "max_sessions": int, "max_bandwidth": int, "max_duration": int
    }
    """
    quota = get_user_service().set_quota_policy(username, _require_json())
    return jsonify({
        'message': f'Quota set successfully for user "{username}"',
        'username': username,
        'quota': quota.to_dict()
    }), 200

@user_bp.route('/<username>/quota', methods=['DELETE'])
@AuthMiddleware.require_auth
def clear_quota(username: str):
    get_user_service().clear_quota(username)
    return jsonify({
        'message': f'Quota removed for user "{username}"',
        'username': username
    }), 200

@user_bp.route('/<username>/metadata', methods=['PUT'])
@AuthMiddleware.require_auth
def update_metadata(username: str):
    get_user_service().update_metadata(username, _require_json())
    return jsonify({
        'message': f'Metadata updated for user "{username}"',
        'username': username
    }), 200

@user_bp.route('/<username>/password', methods=['PUT'])
@AuthMiddleware.require_auth
def update_password(username: str):
    data = _require_json()
    if not data.get('password'):
        return jsonify({
            'error': 'Missing required field',
            'message': 'password is required'
        }), 400

    password_hash = get_auth_service().hash_password(data['password'])
    get_user_service().update_password(username, password_hash)
    return jsonify({
        'message': f'Password updated for user "{username}"',
        'username': username
    }), 200
