#!/usr/bin/env python3
import logging
from typing import Optional
from flask import Flask
from flask_cors import CORS

from config.app_config import AppConfig, get_config
from core.dependency_container import initialize_container, get_service, cleanup_container
from core.logging_config import setup_structured_logging, get_logger
from .routes.user_routes import user_bp
from .routes.session_routes import session_bp
from .routes.auth_routes import auth_bp
from .routes.system_routes import system_bp
from .middleware.error_handler import ErrorHandler
from .middleware.auth_middleware import AuthMiddleware

def create_app(config: Optional[AppConfig] = None) -> Flask:
    """
    Creates and configures the Flask application serving the relay quota API.
    """
    config = config or get_config()
    initialize_container(config)

    app = Flask(__name__)
    CORS(app)

    AuthMiddleware.init_app(app, config.require_api_key())
    ErrorHandler.init_app(app)

    app.register_blueprint(user_bp, url_prefix='/api/users')
    app.register_blueprint(session_bp, url_prefix='/api/sessions')
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(system_bp, url_prefix='/api')

    return app


def main() -> None:
    config = get_config()
    setup_structured_logging(config.monitoring.log_level)
    logger = get_logger(__name__)

    app = create_app(config)
    if config.reaper.enabled:
        get_service('session_reaper').start()

    logger.info("Starting relay quota API", host=config.server.host, port=config.server.port,
                threads=config.server.threads)

    from waitress import serve

    # Suppress Waitress queue warnings
    logging.getLogger('waitress.queue').setLevel(logging.ERROR)

    try:
        serve(app, host=config.server.host, port=config.server.port, threads=config.server.threads)
    finally:
        cleanup_container()


if __name__ == "__main__":
    main()
