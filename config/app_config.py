"""
Centralized application configuration management.
Provides type-safe configuration with environment variable support.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

from core.exceptions import ConfigurationError

@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    path: str = "/etc/relayquota/relay_quota.db"
    pool_size: int = 10
    timeout: float = 5.0

@dataclass
class QuotaConfig:
    """Quota accounting settings and the default policy for new users."""
    reset_period: int = 86400
    conflict_retries: int = 3
    default_max_sessions: int = 5
    default_max_bandwidth: int = 1048576
    default_max_duration: int = 3600

@dataclass
class ReaperConfig:
    """Session reaper settings."""
    enabled: bool = True
    interval: int = 300
    inactivity_threshold: int = 3600
    store_ttl: int = 3600
    batch_size: int = 100

@dataclass
class SecurityConfig:
    """Security configuration settings."""
    api_key: Optional[str] = None
    bcrypt_rounds: int = 12

@dataclass
class ServerConfig:
    """Server configuration settings."""
    host: str = "0.0.0.0"
    port: int = 8088
    threads: int = 8

@dataclass
class MonitoringConfig:
    """Monitoring configuration settings."""
    log_level: str = "INFO"

@dataclass
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    reaper: ReaperConfig = field(default_factory=ReaperConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'AppConfig':
        """Load configuration from environment variables."""
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file)

        return cls(
            database=DatabaseConfig(
                path=os.getenv("DATABASE_PATH", "/etc/relayquota/relay_quota.db"),
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                timeout=float(os.getenv("DB_TIMEOUT", "5"))
            ),
            quota=QuotaConfig(
                reset_period=int(os.getenv("QUOTA_RESET_PERIOD", "86400")),
                conflict_retries=int(os.getenv("QUOTA_CONFLICT_RETRIES", "3")),
                default_max_sessions=int(os.getenv("DEFAULT_MAX_SESSIONS", "5")),
                default_max_bandwidth=int(os.getenv("DEFAULT_MAX_BANDWIDTH", "1048576")),
                default_max_duration=int(os.getenv("DEFAULT_MAX_DURATION", "3600"))
            ),
            reaper=ReaperConfig(
                enabled=os.getenv("REAPER_ENABLED", "true").lower() == "true",
                interval=int(os.getenv("REAPER_INTERVAL", "300")),
                inactivity_threshold=int(os.getenv("SESSION_INACTIVITY_THRESHOLD", "3600")),
                store_ttl=int(os.getenv("SESSION_STORE_TTL", "3600")),
                batch_size=int(os.getenv("REAPER_BATCH_SIZE", "100"))
            ),
            security=SecurityConfig(
                api_key=os.getenv("RELAY_API_KEY"),
                bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12"))
            ),
            server=ServerConfig(
                host=os.getenv("SERVER_HOST", "0.0.0.0"),
                port=int(os.getenv("API_PORT", "8088")),
                threads=int(os.getenv("SERVER_THREADS", "8"))
            ),
            monitoring=MonitoringConfig(
                log_level=os.getenv("LOG_LEVEL", "INFO")
            )
        )

    def validate(self) -> None:
        """Validate configuration settings."""
        if self.quota.reset_period <= 0:
            raise ConfigurationError("QUOTA_RESET_PERIOD must be positive")
        if self.quota.conflict_retries < 1:
            raise ConfigurationError("QUOTA_CONFLICT_RETRIES must be at least 1")
        if self.reaper.interval <= 0:
            raise ConfigurationError("REAPER_INTERVAL must be positive")
        if self.reaper.inactivity_threshold <= 0:
            raise ConfigurationError("SESSION_INACTIVITY_THRESHOLD must be positive")
        if self.reaper.store_ttl < 0:
            raise ConfigurationError("SESSION_STORE_TTL cannot be negative")
        if 0 < self.reaper.store_ttl < self.reaper.inactivity_threshold:
            raise ConfigurationError(
                "SESSION_STORE_TTL must be 0 or at least SESSION_INACTIVITY_THRESHOLD"
            )
        if self.reaper.batch_size <= 0:
            raise ConfigurationError("REAPER_BATCH_SIZE must be positive")
        if self.database.pool_size <= 0:
            raise ConfigurationError("DB_POOL_SIZE must be positive")

        # Ensure database directory exists
        db_path = Path(self.database.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

    def require_api_key(self) -> str:
        """Return the API key, failing when the HTTP API has none configured."""
        if not self.security.api_key:
            raise ConfigurationError("RELAY_API_KEY is required")
        return self.security.api_key

# Global configuration instance
_config: Optional[AppConfig] = None

def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        env_file = os.getenv("RELAY_ENV_FILE", "/etc/relayquota/.env")
        _config = AppConfig.from_env(env_file)
        _config.validate()
    return _config

def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
