"""
Quota enforcement for relay sessions.

The only code path that changes ``current_sessions`` and ``used_bandwidth``.
Every decision re-reads the store; nothing is cached between calls.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar
from data.user_repository import UserRepository
from data.session_repository import SessionRepository
from data.models import Session, UserQuota, utcnow
from config.app_config import QuotaConfig
from core.types import Username, SessionId, Address, TrafficStatus
from core.exceptions import (
    BandwidthExceededError,
    ConflictError,
    DurationExceededError,
    QuotaExceededError,
    StoreUnavailableError,
    UserDisabledError,
    UserNotFoundError,
    ValidationError
)
from core.logging_config import LoggerMixin, log_performance

T = TypeVar('T')

@dataclass
class TrafficReport:
    """Result of a traffic report. Exceedance is advisory: counters are already updated."""
    session: Session
    status: TrafficStatus
    quota: Optional[UserQuota] = None
    elapsed: float = 0.0

    @property
    def bandwidth_exceeded(self) -> bool:
        return (self.quota is not None and self.quota.has_bandwidth_ceiling
                and self.quota.used_bandwidth > self.quota.max_bandwidth)

    @property
    def duration_exceeded(self) -> bool:
        return (self.quota is not None and self.quota.has_duration_ceiling
                and self.elapsed > self.quota.max_duration)

    def raise_for_status(self) -> None:
        """Raise the matching advisory exception when a ceiling was passed."""
        if self.bandwidth_exceeded:
            raise BandwidthExceededError(self.session.username, self.quota.used_bandwidth, self.quota.max_bandwidth)
        if self.duration_exceeded:
            raise DurationExceededError(self.session.id, self.elapsed, self.quota.max_duration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "bandwidth_exceeded": self.bandwidth_exceeded,
            "duration_exceeded": self.duration_exceeded,
            "session": self.session.to_dict(),
            "quota": self.quota.to_dict() if self.quota else None,
        }


class QuotaService(LoggerMixin):
    def __init__(self, user_repo: UserRepository, session_repo: SessionRepository,
                 quota_config: QuotaConfig, clock: Callable[[], datetime] = utcnow):
        self.user_repo = user_repo
        self.session_repo = session_repo
        self.quota_config = quota_config
        self.clock = clock

    def _with_retry(self, operation: str, func: Callable[[], T]) -> T:
        """Run a store operation, retrying lost races a bounded number of times."""
        attempts = self.quota_config.conflict_retries
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except ConflictError as e:
                self.logger.warning("Store conflict", operation=operation, attempt=attempt, error=str(e))
                if attempt < attempts:
                    time.sleep(min(0.01 * (2 ** attempt), 0.5))
        raise StoreUnavailableError(f"{operation} kept conflicting after {attempts} attempts")

    def _reset_if_due(self, username: Username, now: datetime) -> None:
        if self._with_retry("reset_usage", lambda: self.user_repo.reset_usage_if_due(
                username, self.quota_config.reset_period, now)):
            self.logger.info("Usage period reset", username=username)

    @log_performance
    def admit_session(self, username: Username, client_addr: Address,
                      relay_addr: Optional[Address] = None) -> Session:
        """
        Reserve a session slot for ``username`` and open the session.

        The reservation and the session row are written in one transaction,
        so either both exist or neither does, and a concurrent counter
        reconciliation never sees one without the other. Raises
        UserNotFoundError, UserDisabledError or QuotaExceededError without
        creating anything.
        """
        if not client_addr:
            raise ValidationError("client_addr", client_addr, "Client address is required")
        now = self.clock()

        user = self._with_retry("load_user", lambda: self.user_repo.get_user(username))
        if not user.enabled:
            self.logger.info("Admission rejected", username=username, reason="disabled")
            raise UserDisabledError(username)

        self._reset_if_due(username, now)

        def reserve_and_open():
            with self.session_repo.db.transaction() as conn:
                quota = self.user_repo.apply_quota_delta_on(conn, username, 1, 0, now)
                session = self.session_repo.insert_session(conn, username, client_addr, relay_addr, now)
                return session, quota

        try:
            session, quota = self._with_retry("admit_session", reserve_and_open)
        except QuotaExceededError as e:
            self.logger.info("Admission rejected", username=username, reason="quota_exceeded",
                             current_sessions=e.current, max_sessions=e.limit)
            raise

        self.logger.info(
            "Session admitted",
            username=username,
            session_id=session.id,
            client_addr=client_addr,
            current_sessions=quota.current_sessions if quota else None
        )
        return session

    @staticmethod
    def _validate_delta(name: str, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(name, value, "Must be a non-negative integer")
        return value

    @log_performance
    def report_traffic(self, session_id: SessionId, sent_delta: int, recv_delta: int,
                       packets_sent_delta: int = 0, packets_recv_delta: int = 0) -> TrafficReport:
        """
        Record traffic on a session and charge it to the owner's bandwidth.

        Raises SessionNotFoundError for unknown or expired sessions. Passing a
        ceiling is reported through the returned status, never by undoing
        the traffic already relayed.
        """
        for name, value in (("sent_delta", sent_delta), ("recv_delta", recv_delta),
                            ("packets_sent_delta", packets_sent_delta),
                            ("packets_recv_delta", packets_recv_delta)):
            self._validate_delta(name, value)
        now = self.clock()

        session = self._with_retry(
            "record_traffic",
            lambda: self.session_repo.record_traffic(
                session_id, sent_delta, recv_delta, packets_sent_delta, packets_recv_delta, now)
        )
        username = session.username

        try:
            self._reset_if_due(username, now)
            quota = self._with_retry(
                "charge_bandwidth",
                lambda: self.user_repo.apply_quota_delta(username, 0, sent_delta + recv_delta, now)
            )
        except UserNotFoundError:
            self.logger.warning("Traffic reported for session of missing user",
                                username=username, session_id=session_id)
            quota = None

        report = TrafficReport(session=session, status=TrafficStatus.OK, quota=quota,
                               elapsed=session.age_seconds(now))
        if report.bandwidth_exceeded:
            report.status = TrafficStatus.BANDWIDTH_EXCEEDED
            self.logger.warning("Bandwidth exceeded", username=username, session_id=session_id,
                                used_bandwidth=quota.used_bandwidth, max_bandwidth=quota.max_bandwidth)
        elif report.duration_exceeded:
            report.status = TrafficStatus.DURATION_EXCEEDED
            self.logger.warning("Session duration exceeded", username=username, session_id=session_id,
                                elapsed=report.elapsed, max_duration=quota.max_duration)
        return report

    @log_performance
    def release_session(self, session_id: SessionId) -> bool:
        """
        Close a session and hand its slot back. Safe to call repeatedly:
        only the call that actually removed the record decrements the
        owner's counter, in the same transaction as the removal. Returns
        whether this call performed the release.
        """
        now = self.clock()

        def remove_and_release():
            with self.session_repo.db.transaction() as conn:
                removed = self.session_repo.remove_session(conn, session_id)
                if removed is None:
                    return None, None
                try:
                    quota = self.user_repo.apply_quota_delta_on(conn, removed.username, -1, 0, now)
                except UserNotFoundError:
                    quota = None
                return removed, quota

        removed, quota = self._with_retry("release_session", remove_and_release)
        if removed is None:
            self.logger.debug("Session already released", session_id=session_id)
            return False

        self.logger.info(
            "Session released",
            username=removed.username,
            session_id=session_id,
            bytes_sent=removed.bytes_sent,
            bytes_recv=removed.bytes_recv,
            current_sessions=quota.current_sessions if quota else None
        )
        return True

    def get_session(self, session_id: SessionId) -> Session:
        return self.session_repo.get_session(session_id)

    def reconcile_user(self, username: Username) -> Optional[int]:
        """Re-derive the user's session counter from the sessions actually open."""
        live = self._with_retry("reconcile", lambda: self.user_repo.reconcile_session_count(username))
        self.logger.info("Session counter reconciled", username=username, current_sessions=live)
        return live
