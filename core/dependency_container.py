from typing import Dict, Any, Optional, TypeVar, Callable
from config.app_config import AppConfig
from data.db import Database
from data.user_repository import UserRepository
from data.session_repository import SessionRepository
from service.user_service import UserService
from service.auth_service import AuthService
from service.quota_service import QuotaService
from service.reaper import SessionReaper
from core.health_check_manager import HealthCheckManager
T = TypeVar('T')

class DependencyContainer:
    def __init__(self):
        self._instances: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._config: Optional[AppConfig] = None

    def register_config(self, config: AppConfig) -> None:
        self._config = config
        self._instances['config'] = config
    def register_singleton(self, name: str, factory: Callable[[], T]) -> None:
        self._factories[name] = factory

    def get(self, name: str) -> T:
        if name in self._instances:
            return self._instances[name]
        if name in self._factories:
            instance = self._factories[name]()
            self._instances[name] = instance
            return instance
        raise KeyError(f"Dependency '{name}' not registered")
    def register_core_dependencies(self) -> None:
        self.register_singleton('database', self._create_database)
        self.register_singleton('user_repository', self._create_user_repository)
        self.register_singleton('session_repository', self._create_session_repository)
    def register_service_dependencies(self) -> None:
        self.register_singleton('user_service', self._create_user_service)
        self.register_singleton('auth_service', self._create_auth_service)
        self.register_singleton('quota_service', self._create_quota_service)
        self.register_singleton('session_reaper', self._create_session_reaper)
        self.register_singleton('health_check_manager', self._create_health_check_manager)
    def _create_database(self) -> Database:
        db_config = self._config.database
        return Database(db_config.path, db_config.pool_size, db_config.timeout)
    def _create_user_repository(self) -> UserRepository:
        return UserRepository(self.get('database'))
    def _create_session_repository(self) -> SessionRepository:
        return SessionRepository(self.get('database'))
    def _create_user_service(self) -> UserService:
        return UserService(self.get('user_repository'), self._config.quota)
    def _create_auth_service(self) -> AuthService:
        return AuthService(self.get('user_repository'), self._config.security.bcrypt_rounds)
    def _create_quota_service(self) -> QuotaService:
        return QuotaService(
            self.get('user_repository'),
            self.get('session_repository'),
            self._config.quota
        )
    def _create_session_reaper(self) -> SessionReaper:
        return SessionReaper(
            self.get('session_repository'),
            self.get('quota_service'),
            self._config.reaper
        )
    def _create_health_check_manager(self) -> HealthCheckManager:
        reaper = self.get('session_reaper') if self._config.reaper.enabled else None
        return HealthCheckManager(
            self.get('database'),
            self.get('user_repository'),
            self.get('session_repository'),
            reaper
        )
    def cleanup(self) -> None:
        reaper = self._instances.get('session_reaper')
        if reaper:
            reaper.stop(timeout=5)
        database = self._instances.get('database')
        if database:
            database.cleanup_pool()
        self._instances.clear()
        self._factories.clear()
_container = DependencyContainer()
def get_container() -> DependencyContainer:
    return _container
def initialize_container(config: AppConfig) -> None:
    container = get_container()
    # Drop instances built for a previous configuration
    container.cleanup()
    container.register_config(config)
    container.register_core_dependencies()
    container.register_service_dependencies()
def get_service(service_name: str) -> Any:
    return get_container().get(service_name)
def cleanup_container() -> None:
    get_container().cleanup()
