# Core module exports
from .types import *
from .exceptions import *

__all__ = [
    'TrafficStatus',
    'HealthState',
    'RelayQuotaError',
    'NotFoundError',
    'UserNotFoundError',
    'SessionNotFoundError',
    'UserAlreadyExistsError',
    'UserDisabledError',
    'QuotaExceededError',
    'BandwidthExceededError',
    'DurationExceededError',
    'DatabaseError',
    'ConflictError',
    'StoreUnavailableError',
    'ConfigurationError',
    'ValidationError',
    'AuthenticationError'
]
