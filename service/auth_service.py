"""
Credential checks for the relay's authentication callback.
"""

import bcrypt
from data.user_repository import UserRepository
from data.models import User
from core.types import Username
from core.exceptions import AuthenticationError, ValidationError, UserNotFoundError
from core.logging_config import LoggerMixin

class AuthService(LoggerMixin):
    """Hashes passwords for the registry and verifies them at login."""

    def __init__(self, user_repo: UserRepository, bcrypt_rounds: int = 12):
        self.user_repo = user_repo
        self.bcrypt_rounds = bcrypt_rounds

    def hash_password(self, password: str) -> str:
        if not password:
            raise ValidationError("password", "", "Password cannot be empty")
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode('utf-8')

    @staticmethod
    def _check_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
        except ValueError:
            # Stored value is not a bcrypt hash
            return False

    def authenticate(self, username: Username, password: str) -> User:
        """Verify credentials of an enabled user and stamp ``last_login``."""
        if not username or not password:
            raise AuthenticationError("Username and password are required")
        try:
            user = self.user_repo.get_user(username)
        except UserNotFoundError:
            self.logger.warning("Authentication failed", username=username, reason="unknown_user")
            raise AuthenticationError("Invalid username or password")
        if not user.enabled:
            self.logger.warning("Authentication failed", username=username, reason="disabled")
            raise AuthenticationError("Invalid username or password")
        if not self._check_password(password, user.password):
            self.logger.warning("Authentication failed", username=username, reason="bad_password")
            raise AuthenticationError("Invalid username or password")

        self.user_repo.record_login(username)
        self.logger.info("User authenticated", username=username)
        return self.user_repo.get_user(username)
