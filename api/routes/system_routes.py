from flask import Blueprint, request, jsonify
from api.middleware.auth_middleware import AuthMiddleware
from core.dependency_container import get_service
from core.health_check_manager import HealthCheckManager
from core.types import HealthState
from data.session_repository import SessionRepository

system_bp = Blueprint('system', __name__)

def get_health_manager() -> HealthCheckManager:
    return get_service('health_check_manager')

def get_session_repository() -> SessionRepository:
    return get_service('session_repository')

@system_bp.route('/health', methods=['GET'])
def health_check():
    """Liveness and component health; open to load balancers."""
    health = get_health_manager().check_health()
    status_code = 503 if health['status'] == HealthState.UNHEALTHY.value else 200
    return jsonify(health), status_code

@system_bp.route('/ready', methods=['GET'])
def readiness_check():
    """Readiness for traffic; 503 until the store and the reaper are up."""
    readiness = get_health_manager().check_readiness()
    return jsonify(readiness), 200 if readiness['ready'] else 503

@system_bp.route('/metrics', methods=['GET'])
@AuthMiddleware.require_auth
def metrics():
    return jsonify(get_health_manager().collect_metrics()), 200

@system_bp.route('/sessions', methods=['GET'])
@AuthMiddleware.require_auth
def list_sessions():
    """List open sessions, optionally for one user."""
    repo = get_session_repository()
    username = request.args.get('username')
    if username:
        sessions = repo.list_sessions_for_user(username)
    else:
        try:
            offset = int(request.args.get('offset', 0))
            limit = min(int(request.args.get('limit', 100)), 1000)
        except ValueError:
            return jsonify({
                'error': 'Invalid pagination',
                'message': 'offset and limit must be integers'
            }), 400
        sessions = repo.list_sessions(offset, limit)

    return jsonify({
        'count': len(sessions),
        'sessions': [session.to_dict() for session in sessions]
    }), 200
