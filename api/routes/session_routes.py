from flask import Blueprint, request, jsonify
from api.middleware.auth_middleware import AuthMiddleware
from core.dependency_container import get_service
from core.exceptions import ValidationError
from service.quota_service import QuotaService

session_bp = Blueprint('sessions', __name__)

def get_quota_service() -> QuotaService:
    return get_service('quota_service')

@session_bp.route('/', methods=['POST'])
@AuthMiddleware.require_auth
def admit_session():
    """
    Admit a new relay session for a user.

    Request body:
    {
        "username": "string",
        "client_addr": "ip:port",
        "relay_addr": "ip:port" (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    if not data.get('username') or not data.get('client_addr'):
        return jsonify({
            'error': 'Missing required field',
            'message': 'username and client_addr are required'
        }), 400

    session = get_quota_service().admit_session(
        data['username'],
        data['client_addr'],
        data.get('relay_addr')
    )
    return jsonify({
        'message': 'Session admitted',
        'session_id': session.id,
        'session': session.to_dict()
    }), 201

@session_bp.route('/<session_id>', methods=['GET'])
@AuthMiddleware.require_auth
def get_session(session_id: str):
    session = get_quota_service().get_session(session_id)
    return jsonify({'session': session.to_dict()}), 200

@session_bp.route('/<session_id>/traffic', methods=['POST'])
@AuthMiddleware.require_auth
def report_traffic(session_id: str):
    """
    Report traffic relayed since the previous report.

    Request body:
    {
        "bytes_sent": int, "bytes_recv": int,
        "packets_sent": int (optional), "packets_recv": int (optional)
    }

    Passing a ceiling is not an HTTP error: the response carries
    ``status`` so the relay can throttle or close the flow.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('body', None, 'A JSON object is required')

    report = get_quota_service().report_traffic(
        session_id,
        data.get('bytes_sent', 0),
        data.get('bytes_recv', 0),
        data.get('packets_sent', 0),
        data.get('packets_recv', 0)
    )
    return jsonify(report.to_dict()), 200

@session_bp.route('/<session_id>', methods=['DELETE'])
@AuthMiddleware.require_auth
def release_session(session_id: str):
    """Close a session. Repeating the call is harmless."""
    released = get_quota_service().release_session(session_id)
    return jsonify({
        'session_id': session_id,
        'released': released
    }), 200
