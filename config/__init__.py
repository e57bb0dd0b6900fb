# Configuration module exports
from .app_config import (
    AppConfig,
    DatabaseConfig,
    QuotaConfig,
    ReaperConfig,
    SecurityConfig,
    ServerConfig,
    MonitoringConfig,
    get_config,
    set_config
)

__all__ = [
    'AppConfig',
    'DatabaseConfig',
    'QuotaConfig',
    'ReaperConfig',
    'SecurityConfig',
    'ServerConfig',
    'MonitoringConfig',
    'get_config',
    'set_config'
]
