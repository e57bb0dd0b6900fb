# Data module exports
from .models import User, UserQuota, Session
from .db import Database
from .user_repository import UserRepository
from .session_repository import SessionRepository

__all__ = [
    'User',
    'UserQuota',
    'Session',
    'Database',
    'UserRepository',
    'SessionRepository'
]
