from datetime import timedelta

import pytest

from core.exceptions import (
    QuotaExceededError,
    UserAlreadyExistsError,
    UserNotFoundError,
    ValidationError
)


def test_create_and_get_user(user_repo, make_user):
    make_user("alice", max_sessions=3, max_bandwidth=1000, max_duration=60)

    user = user_repo.get_user("alice")

    assert user.username == "alice"
    assert user.enabled is True
    assert user.password == "hashed-secret"
    assert user.quota.max_sessions == 3
    assert user.quota.current_sessions == 0
    assert user.quota.used_bandwidth == 0
    assert user.metadata == {}


def test_create_duplicate_user_raises(make_user):
    make_user("alice")
    with pytest.raises(UserAlreadyExistsError, match="User 'alice' already exists"):
        make_user("alice")


def test_metadata_is_passed_through(user_repo):
    user_repo.create_user("bob", "hash", metadata={"plan": "premium", "regions": ["eu", "us"]})
    assert user_repo.get_user("bob").metadata == {"plan": "premium", "regions": ["eu", "us"]}
    assert user_repo.get_user("bob").quota is None


def test_get_missing_user_raises(user_repo):
    with pytest.raises(UserNotFoundError):
        user_repo.get_user("ghost")
    assert user_repo.find_user_by_username("ghost") is None


def test_set_enabled_advances_updated_at(user_repo, make_user, clock):
    created = make_user("alice")
    later = clock.advance(30)

    user_repo.set_enabled("alice", False, now=later)

    user = user_repo.get_user("alice")
    assert user.enabled is False
    assert user.updated_at > created.updated_at


def test_set_enabled_missing_user(user_repo):
    with pytest.raises(UserNotFoundError):
        user_repo.set_enabled("ghost", True)


def test_apply_quota_delta_respects_ceiling(user_repo, make_user):
    make_user("alice", max_sessions=2)

    assert user_repo.apply_quota_delta("alice", 1, 0).current_sessions == 1
    assert user_repo.apply_quota_delta("alice", 1, 0).current_sessions == 2
    with pytest.raises(QuotaExceededError):
        user_repo.apply_quota_delta("alice", 1, 0)

    assert user_repo.get_user("alice").quota.current_sessions == 2


def test_apply_quota_delta_floors_at_zero(user_repo, make_user):
    make_user("alice", max_sessions=2)

    quota = user_repo.apply_quota_delta("alice", -1, 0)

    assert quota.current_sessions == 0


def test_apply_quota_delta_accumulates_bandwidth_past_ceiling(user_repo, make_user):
    make_user("alice", max_sessions=1, max_bandwidth=1000)

    user_repo.apply_quota_delta("alice", 0, 800)
    quota = user_repo.apply_quota_delta("alice", 0, 400)

    assert quota.used_bandwidth == 1200


def test_apply_quota_delta_without_quota_tracks_nothing(user_repo, make_user):
    make_user("free", with_quota=False)
    assert user_repo.apply_quota_delta("free", 1, 500) is None


def test_apply_quota_delta_zero_ceiling_rejects(user_repo, make_user):
    make_user("blocked", max_sessions=0)
    with pytest.raises(QuotaExceededError):
        user_repo.apply_quota_delta("blocked", 1, 0)


def test_reset_usage_is_idempotent_before_reset_at(user_repo, make_user, clock, quota_config):
    make_user("alice", max_bandwidth=1000)
    user_repo.apply_quota_delta("alice", 0, 700, now=clock())

    for _ in range(3):
        assert user_repo.reset_usage_if_due("alice", quota_config.reset_period, now=clock()) is False

    assert user_repo.get_user("alice").quota.used_bandwidth == 700


def test_reset_usage_happens_once_per_period(user_repo, make_user, clock, quota_config):
    make_user("alice", max_bandwidth=1000)
    user_repo.apply_quota_delta("alice", 0, 700, now=clock())
    original_reset = user_repo.get_user("alice").quota.reset_at

    now = clock.advance(86400 + 10)
    results = [user_repo.reset_usage_if_due("alice", quota_config.reset_period, now=now) for _ in range(5)]

    assert results.count(True) == 1
    quota = user_repo.get_user("alice").quota
    assert quota.used_bandwidth == 0
    assert quota.reset_at == original_reset + timedelta(seconds=quota_config.reset_period)


def test_reset_after_several_missed_periods_lands_in_future(user_repo, make_user, clock, quota_config):
    make_user("alice")

    now = clock.advance(86400 * 3 + 5)
    assert user_repo.reset_usage_if_due("alice", quota_config.reset_period, now=now) is True

    reset_at = user_repo.get_user("alice").quota.reset_at
    assert now < reset_at <= now + timedelta(seconds=quota_config.reset_period)


def test_reset_reconciles_drifted_session_counter(user_repo, session_repo, make_user, clock, quota_config):
    make_user("alice", max_sessions=3)
    user_repo.apply_quota_delta("alice", 2, 0)
    session_repo.open_session("alice", "10.0.0.1:5000", now=clock())

    user_repo.reset_usage_if_due("alice", quota_config.reset_period, now=clock.advance(86401))

    assert user_repo.get_user("alice").quota.current_sessions == 1


def test_set_quota_policy_starts_from_open_sessions(user_repo, session_repo, make_user, clock):
    make_user("alice", with_quota=False)
    session_repo.open_session("alice", "10.0.0.1:5000", now=clock())

    quota = user_repo.set_quota_policy("alice", 4, 5000, 600, 86400, now=clock())

    assert quota.current_sessions == 1
    assert user_repo.get_user("alice").quota.max_sessions == 4


def test_set_quota_policy_rejects_ceiling_below_reservations(user_repo, make_user):
    make_user("alice", max_sessions=3)
    user_repo.apply_quota_delta("alice", 2, 0)

    with pytest.raises(ValidationError):
        user_repo.set_quota_policy("alice", 1, 0, 0, 86400)

    assert user_repo.get_user("alice").quota.max_sessions == 3


def test_clear_quota_makes_user_unlimited(user_repo, make_user):
    make_user("alice", max_sessions=1)
    user_repo.clear_quota("alice")
    assert user_repo.get_user("alice").quota is None


def test_delete_user_removes_sessions(user_repo, session_repo, make_user, clock):
    make_user("alice")
    session = session_repo.open_session("alice", "10.0.0.1:5000", now=clock())

    assert user_repo.delete_user("alice") is True
    assert user_repo.delete_user("alice") is False
    assert session_repo.find_session(session.id) is None


def test_list_users_newest_first(user_repo, make_user, clock):
    make_user("first")
    clock.advance(10)
    make_user("second")

    assert [u.username for u in user_repo.list_users()] == ["second", "first"]
    assert user_repo.count_users() == 2


def test_record_login(user_repo, make_user, clock):
    make_user("alice")
    user_repo.record_login("alice", now=clock.advance(5))
    assert user_repo.get_user("alice").last_login == clock()
