import re
from datetime import timedelta
from typing import Dict, Any, List, Optional
from data.user_repository import UserRepository
from data.models import User, UserQuota, utcnow
from config.app_config import QuotaConfig
from core.types import Username, Metadata
from core.exceptions import UserNotFoundError, ValidationError
from core.logging_config import LoggerMixin

USERNAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.@-]{1,63}$")

class UserService(LoggerMixin):
    """Administrative operations on the user registry."""

    def __init__(self, user_repo: UserRepository, quota_config: QuotaConfig):
        self.user_repo = user_repo
        self.quota_config = quota_config

    @staticmethod
    def validate_username(username: str) -> Username:
        if not username or not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "username",
                username,
                "Must start with a letter, contain only letters, digits, '_', '.', '@' or '-', "
                "and be 2-64 characters long"
            )
        return username

    @staticmethod
    def _validate_limit(name: str, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(name, value, "Must be an integer")
        if value < 0:
            raise ValidationError(name, value, "Must be non-negative")
        return value

    def default_quota(self) -> UserQuota:
        """Quota policy applied when the caller does not supply one."""
        return UserQuota(
            max_sessions=self.quota_config.default_max_sessions,
            max_bandwidth=self.quota_config.default_max_bandwidth,
            max_duration=self.quota_config.default_max_duration,
        )

    def build_quota(self, policy: Dict[str, Any]) -> UserQuota:
        """Validate a policy mapping; missing ceilings fall back to the defaults."""
        defaults = self.default_quota()
        return UserQuota(
            max_sessions=self._validate_limit("max_sessions", policy.get("max_sessions", defaults.max_sessions)),
            max_bandwidth=self._validate_limit("max_bandwidth", policy.get("max_bandwidth", defaults.max_bandwidth)),
            max_duration=self._validate_limit("max_duration", policy.get("max_duration", defaults.max_duration)),
        )

    def create_user(self, username: Username, password: str, quota: Optional[UserQuota] = None,
                    metadata: Optional[Metadata] = None, enabled: bool = True) -> User:
        """Register a user. ``password`` is stored as given (already hashed)."""
        self.validate_username(username)
        if not password:
            raise ValidationError("password", "", "Password hash is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata", metadata, "Must be a mapping")
        if quota is not None:
            for name in ("max_sessions", "max_bandwidth", "max_duration"):
                self._validate_limit(name, getattr(quota, name))
            quota.reset_at = utcnow() + timedelta(seconds=self.quota_config.reset_period)
        user = self.user_repo.create_user(username, password, quota=quota, metadata=metadata, enabled=enabled)
        self.logger.info("User created", username=username, enabled=enabled, has_quota=quota is not None)
        return user

    def get_user(self, username: Username) -> User:
        return self.user_repo.get_user(username)

    def list_users(self, offset: int = 0, limit: int = 100) -> List[User]:
        if offset < 0 or limit <= 0 or limit > 1000:
            raise ValidationError("pagination", f"{offset}/{limit}", "offset >= 0 and 0 < limit <= 1000 required")
        return self.user_repo.list_users(offset, limit)

    def set_enabled(self, username: Username, enabled: bool) -> None:
        self.user_repo.set_enabled(username, enabled)
        self.logger.info("User enabled flag changed", username=username, enabled=enabled)

    def set_quota_policy(self, username: Username, policy: Dict[str, Any]) -> UserQuota:
        quota = self.build_quota(policy)
        updated = self.user_repo.set_quota_policy(
            username,
            quota.max_sessions,
            quota.max_bandwidth,
            quota.max_duration,
            self.quota_config.reset_period
        )
        self.logger.info("Quota policy updated", username=username, **quota.to_dict())
        return updated

    def clear_quota(self, username: Username) -> None:
        self.user_repo.clear_quota(username)
        self.logger.info("Quota removed", username=username)

    def update_metadata(self, username: Username, metadata: Metadata) -> None:
        if not isinstance(metadata, dict):
            raise ValidationError("metadata", metadata, "Must be a mapping")
        self.user_repo.update_metadata(username, metadata)

    def update_password(self, username: Username, password: str) -> None:
        if not password:
            raise ValidationError("password", "", "Password hash is required")
        self.user_repo.update_password(username, password)
        self.logger.info("Password updated", username=username)

    def delete_user(self, username: Username) -> None:
        if not self.user_repo.delete_user(username):
            raise UserNotFoundError(username)
        self.logger.info("User deleted", username=username)
