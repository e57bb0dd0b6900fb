"""
Custom exception classes for the relay quota service.
Maps the admission/accounting error taxonomy onto Python exceptions.
"""

class RelayQuotaError(Exception):
    """Base exception for relay quota operations."""
    pass

class NotFoundError(RelayQuotaError):
    """Raised when a user or session record is absent."""
    pass

class UserNotFoundError(NotFoundError):
    """Raised when trying to access a non-existent user."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' not found")

class SessionNotFoundError(NotFoundError):
    """Raised when a session is absent or already expired."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")

class UserAlreadyExistsError(RelayQuotaError):
    """Raised when trying to create a user that already exists."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' already exists")

class UserDisabledError(RelayQuotaError):
    """Raised when a disabled user asks for admission."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' is disabled")

class QuotaExceededError(RelayQuotaError):
    """Raised when a session reservation would exceed max_sessions."""

    def __init__(self, username: str, current: int, limit: int):
        self.username = username
        self.current = current
        self.limit = limit
        super().__init__(f"User '{username}' session quota exceeded ({current}/{limit})")

class BandwidthExceededError(RelayQuotaError):
    """Advisory: traffic was recorded but the bandwidth ceiling is passed."""

    def __init__(self, username: str, used: int, limit: int):
        self.username = username
        self.used = used
        self.limit = limit
        super().__init__(f"User '{username}' bandwidth exceeded ({used}/{limit} bytes)")

class DurationExceededError(RelayQuotaError):
    """Advisory: the session outlived the user's max_duration."""

    def __init__(self, session_id: str, elapsed: float, limit: int):
        self.session_id = session_id
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(f"Session '{session_id}' exceeded max duration ({int(elapsed)}/{limit} seconds)")

class DatabaseError(RelayQuotaError):
    """Raised when database operations fail."""
    pass

class ConflictError(DatabaseError):
    """Raised when a concurrent update won the race; retry the whole operation."""
    pass

class StoreUnavailableError(DatabaseError):
    """Raised when the durable store cannot be reached or keeps conflicting."""
    pass

class ConfigurationError(RelayQuotaError):
    """Raised when configuration is invalid or missing."""
    pass

class ValidationError(RelayQuotaError):
    """Raised when input validation fails."""

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Validation failed for {field}='{value}': {reason}")

class AuthenticationError(RelayQuotaError):
    """Raised when authentication fails."""
    pass

class HealthCheckError(RelayQuotaError):
    """Raised when the health check itself cannot be performed."""
    pass
