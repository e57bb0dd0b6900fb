from dataclasses import replace
from unittest.mock import Mock, patch

import pytest

from core.exceptions import StoreUnavailableError
from service.reaper import SessionReaper, SweepResult


@pytest.fixture
def reaper(session_repo, quota_service, reaper_config, clock):
    return SessionReaper(session_repo, quota_service, reaper_config, clock=clock)


def _open(quota_service, username, count):
    return [quota_service.admit_session(username, f"10.0.0.1:{i}") for i in range(count)]


def test_sweep_releases_idle_sessions(reaper, quota_service, user_repo, session_repo, make_user, clock):
    make_user("alice", max_sessions=3)
    idle = _open(quota_service, "alice", 2)
    clock.advance(3000)
    active = quota_service.admit_session("alice", "10.0.0.1:9")

    result = reaper.sweep(now=clock.advance(1000))

    assert result == SweepResult(scanned=2, released=2)
    assert [s.id for s in session_repo.list_sessions()] == [active.id]
    assert user_repo.get_user("alice").quota.current_sessions == 1
    assert all(session_repo.find_session(s.id) is None for s in idle)
    assert reaper.last_result is result


def test_traffic_keeps_session_alive(reaper, quota_service, session_repo, make_user, clock):
    make_user("alice", max_sessions=1)
    session = quota_service.admit_session("alice", "10.0.0.1:1")
    clock.advance(3000)
    quota_service.report_traffic(session.id, 10, 10)

    result = reaper.sweep(now=clock.advance(1000))

    assert result.scanned == 0
    assert session_repo.find_session(session.id) is not None


def test_sweep_tolerates_concurrent_close(reaper, quota_service, user_repo, make_user, clock):
    make_user("alice", max_sessions=3)
    _open(quota_service, "alice", 3)
    clock.advance(7200)
    real_release = quota_service.release_session

    def release_racing_with_client(session_id):
        # The client closes the same session just before the reaper gets to it
        real_release(session_id)
        return real_release(session_id)

    with patch.object(quota_service, "release_session", side_effect=release_racing_with_client):
        result = reaper.sweep()

    assert result.scanned == 3
    assert result.released == 0
    assert result.already_closed == 3
    assert user_repo.get_user("alice").quota.current_sessions == 0


def test_sweep_continues_after_failure(reaper, quota_service, session_repo, make_user, clock):
    make_user("alice", max_sessions=3)
    sessions = _open(quota_service, "alice", 3)
    clock.advance(7200)
    real_release = quota_service.release_session
    broken = sessions[0].id

    def release(session_id):
        if session_id == broken:
            raise StoreUnavailableError("transient")
        return real_release(session_id)

    with patch.object(quota_service, "release_session", side_effect=release):
        result = reaper.sweep()

    assert result.failed == 1
    assert result.released == 2
    assert [s.id for s in session_repo.list_sessions()] == [broken]


def test_sweep_purges_and_reconciles(session_repo, quota_service, user_repo, reaper_config, make_user, clock):
    make_user("alice", max_sessions=3)
    _open(quota_service, "alice", 2)
    config = replace(reaper_config, inactivity_threshold=10**7, store_ttl=1800)
    reaper = SessionReaper(session_repo, quota_service, config, clock=clock)

    result = reaper.sweep(now=clock.advance(3600))

    assert result.scanned == 0
    assert result.purged == 2
    assert session_repo.list_sessions() == []
    assert user_repo.get_user("alice").quota.current_sessions == 0


def test_sweep_stops_between_records(reaper, quota_service, make_user, clock):
    make_user("alice", max_sessions=5)
    _open(quota_service, "alice", 5)
    clock.advance(7200)
    real_release = quota_service.release_session

    def release_then_stop(session_id):
        reaper._stop_event.set()
        return real_release(session_id)

    with patch.object(quota_service, "release_session", side_effect=release_then_stop):
        result = reaper.sweep()

    assert result.scanned == 1
    assert result.released == 1


def test_run_forever_backs_off_and_stops(reaper_config):
    session_repo = Mock()
    session_repo.list_expired.side_effect = StoreUnavailableError("down")
    reaper = SessionReaper(session_repo, Mock(), reaper_config)
    waits = []

    def fake_wait(timeout):
        waits.append(timeout)
        if len(waits) >= 2:
            reaper._stop_event.set()
        return reaper._stop_event.is_set()

    with patch.object(reaper._stop_event, "wait", side_effect=fake_wait):
        reaper.run_forever()

    assert waits == [120, 240]


def test_start_and_stop_thread(session_repo, quota_service, reaper_config, clock):
    reaper = SessionReaper(session_repo, quota_service, replace(reaper_config, interval=3600), clock=clock)

    assert reaper.is_running() is False
    thread = reaper.start()
    assert thread.is_alive()
    assert reaper.is_running() is True
    assert reaper.start() is thread

    reaper.stop(timeout=5)

    assert not thread.is_alive()
    assert reaper.is_running() is False
