"""
Background reclamation of sessions the relay layer never closed.
"""

import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Dict, Any, Optional
from data.session_repository import SessionRepository
from data.models import utcnow
from service.quota_service import QuotaService
from config.app_config import ReaperConfig
from core.logging_config import LoggerMixin

@dataclass
class SweepResult:
    scanned: int = 0
    released: int = 0
    already_closed: int = 0
    failed: int = 0
    purged: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SessionReaper(LoggerMixin):
    def __init__(self, session_repo: SessionRepository, quota_service: QuotaService,
                 config: ReaperConfig, clock: Callable[[], datetime] = utcnow):
        self.session_repo = session_repo
        self.quota_service = quota_service
        self.config = config
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[SweepResult] = None

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        One pass: release every session idle past the threshold, then apply
        the store-level TTL purge and reconcile the users it touched.
        A failure on one session is logged and the pass moves on.
        """
        now = now or self.clock()
        result = SweepResult()

        expired = self.session_repo.list_expired(
            self.config.inactivity_threshold, now, self.config.batch_size
        )
        for session_id in expired:
            if self._stop_event.is_set():
                self.logger.info("Sweep interrupted", scanned=result.scanned)
                break
            result.scanned += 1
            try:
                if self.quota_service.release_session(session_id):
                    result.released += 1
                else:
                    result.already_closed += 1
            except Exception as e:
                result.failed += 1
                self.logger.error("Failed to release expired session", session_id=session_id,
                                  error=str(e), error_type=type(e).__name__)

        if self.config.store_ttl > 0 and not self._stop_event.is_set():
            self._purge_stale(now, result)

        self.last_result = result
        self.logger.info("Reaper sweep completed", **result.to_dict())
        return result

    def _purge_stale(self, now: datetime, result: SweepResult) -> None:
        try:
            dropped = self.session_repo.purge_stale(self.config.store_ttl, now)
        except Exception as e:
            self.logger.error("Store TTL purge failed", error=str(e))
            return
        for username, count in dropped.items():
            result.purged += count
            try:
                self.quota_service.reconcile_user(username)
            except Exception as e:
                result.failed += 1
                self.logger.error("Failed to reconcile user after purge", username=username, error=str(e))

    def run_forever(self) -> None:
        """Sweep on the configured cadence until stop() is called."""
        self.logger.info(
            "Reaper started",
            interval=self.config.interval,
            inactivity_threshold=self.config.inactivity_threshold
        )
        consecutive_failures = 0
        while not self._stop_event.is_set():
            wait_time = self.config.interval
            try:
                self.sweep()
                consecutive_failures = 0
            except Exception as e:
                consecutive_failures += 1
                # Exponential backoff for a store that keeps failing
                wait_time = min(self.config.interval * (2 ** min(consecutive_failures, 4)), 3600)
                self.logger.error("Reaper sweep failed", error=str(e),
                                  consecutive_failures=consecutive_failures, retry_in=wait_time)
            self._stop_event.wait(wait_time)
        self.logger.info("Reaper stopped")

    def start(self) -> threading.Thread:
        """Run the reaper loop in a daemon thread."""
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="session-reaper", daemon=True)
        self._thread.start()
        return self._thread

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
