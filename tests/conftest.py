import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config.app_config import QuotaConfig, ReaperConfig
from data.db import Database
from data.models import UserQuota
from data.user_repository import UserRepository
from data.session_repository import SessionRepository
from service.quota_service import QuotaService


class FakeClock:
    """Deterministic clock that tests move forward by hand."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "relay_quota.db"), pool_size=8, timeout=5.0)
    yield database
    database.cleanup_pool()


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def session_repo(db):
    return SessionRepository(db)


@pytest.fixture
def quota_config():
    return QuotaConfig(reset_period=86400, conflict_retries=3)


@pytest.fixture
def reaper_config():
    return ReaperConfig(interval=60, inactivity_threshold=3600, store_ttl=0, batch_size=2)


@pytest.fixture
def quota_service(user_repo, session_repo, quota_config, clock):
    return QuotaService(user_repo, session_repo, quota_config, clock=clock)


@pytest.fixture
def make_user(user_repo, clock):
    """Create a user with a quota whose period ends a day after the fake clock."""
    def _make_user(username="u1", max_sessions=1, max_bandwidth=0, max_duration=0,
                   enabled=True, with_quota=True):
        quota = None
        if with_quota:
            quota = UserQuota(
                max_sessions=max_sessions,
                max_bandwidth=max_bandwidth,
                max_duration=max_duration,
                reset_at=clock() + timedelta(days=1),
            )
        return user_repo.create_user(username, "hashed-secret", quota=quota, enabled=enabled, now=clock())
    return _make_user
