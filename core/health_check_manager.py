"""
Health and metrics reporting for the relay quota service.
"""

import os
import time
import threading
import psutil
from typing import Dict, Any, Optional
from core.logging_config import LoggerMixin
from core.exceptions import DatabaseError, HealthCheckError
from core.types import HealthState

VERSION = "1.0.0"

class HealthCheckManager(LoggerMixin):
    """Builds the health, readiness and metrics snapshots served by the API."""

    def __init__(self, database, user_repo, session_repo, reaper=None):
        self.database = database
        self.user_repo = user_repo
        self.session_repo = session_repo
        self.reaper = reaper
        self.start_time = time.time()

    def uptime(self) -> float:
        return time.time() - self.start_time

    def _check_database(self) -> Dict[str, Any]:
        """Check database connectivity and latency."""
        start_time = time.perf_counter()
        try:
            self.database.ping()
        except DatabaseError as e:
            return {"status": HealthState.UNHEALTHY.value, "error": str(e)}
        return {
            "status": HealthState.HEALTHY.value,
            "query_time_ms": (time.perf_counter() - start_time) * 1000
        }

    def _check_reaper(self) -> Dict[str, Any]:
        if self.reaper is None:
            return {"status": "disabled"}
        last = self.reaper.last_result
        return {
            "status": HealthState.HEALTHY.value if not last or not last.failed else HealthState.DEGRADED.value,
            "last_sweep": last.to_dict() if last else None
        }

    def check_health(self) -> Dict[str, Any]:
        """Perform the health check of the store and the reaper."""
        try:
            checks = {
                "database": self._check_database(),
                "reaper": self._check_reaper()
            }
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            raise HealthCheckError(f"Health check failed: {e}")

        overall = HealthState.HEALTHY
        if any(check["status"] == HealthState.UNHEALTHY.value for check in checks.values()):
            overall = HealthState.UNHEALTHY
        elif any(check["status"] == HealthState.DEGRADED.value for check in checks.values()):
            overall = HealthState.DEGRADED

        return {
            "status": overall.value,
            "timestamp": time.time(),
            "version": VERSION,
            "uptime_seconds": self.uptime(),
            "services": checks
        }

    def check_readiness(self) -> Dict[str, Any]:
        """
        Whether this instance can take traffic: the store answers and, when
        the reaper is enabled, its loop is running.
        """
        services = {}
        try:
            self.database.ping()
            services["database"] = "ready"
        except DatabaseError as e:
            services["database"] = f"not ready: {e}"

        if self.reaper is None:
            services["reaper"] = "disabled"
        elif self.reaper.is_running():
            services["reaper"] = "ready"
        else:
            services["reaper"] = "not ready: reaper thread is not running"

        ready = all(state in ("ready", "disabled") for state in services.values())
        if not ready:
            self.logger.warning("Readiness check failed", services=services)
        return {
            "ready": ready,
            "timestamp": time.time(),
            "services": services
        }

    def collect_metrics(self) -> Dict[str, Any]:
        """Session/traffic totals from the store plus process resource usage."""
        summary = self.session_repo.get_traffic_summary()
        process = psutil.Process(os.getpid())
        return {
            "active_sessions": summary["active_sessions"],
            "total_users": self.user_repo.count_users(),
            "bytes_transferred": summary["bytes_transferred"],
            "packets_transferred": summary["packets_transferred"],
            "used_bandwidth": self.user_repo.get_total_usage(),
            "cpu_usage": psutil.cpu_percent(interval=None),
            "memory_usage": process.memory_info().rss / (1024 * 1024),
            "thread_count": threading.active_count()
        }
