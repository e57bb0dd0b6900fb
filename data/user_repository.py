import json
import sqlite3
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from .db import Database
from .schema import SCHEMA
from .models import User, UserQuota, utcnow, format_ts, parse_ts
from core.types import Username, Metadata
from core.exceptions import (
    UserAlreadyExistsError,
    UserNotFoundError,
    QuotaExceededError,
    ValidationError
)

class UserRepository:
    def __init__(self, db: Database) -> None:
        self.db = db
        self._create_tables_if_not_exist()

    def _create_tables_if_not_exist(self) -> None:
        self.db.execute_script(SCHEMA)

    def _fetch_user_row(self, conn: sqlite3.Connection, username: Username) -> Dict[str, Any]:
        row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            raise UserNotFoundError(username)
        return dict(row)

    @staticmethod
    def _live_session_count(conn: sqlite3.Connection, username: Username) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS live FROM sessions WHERE username = ?", (username,)
        ).fetchone()
        return row["live"]

    def create_user(self, username: Username, password: str, quota: Optional[UserQuota] = None,
                    metadata: Optional[Metadata] = None, enabled: bool = True,
                    salt: Optional[str] = None, now: Optional[datetime] = None) -> User:
        """Insert a new user. The quota counters always start at zero."""
        now = now or utcnow()
        stamp = format_ts(now)
        query = """
        INSERT INTO users (
            username, password, salt, enabled, created_at, updated_at,
            has_quota, max_sessions, max_bandwidth, max_duration,
            current_sessions, used_bandwidth, reset_at, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?)
        """
        params = (
            username, password, salt, int(enabled), stamp, stamp,
            int(quota is not None),
            quota.max_sessions if quota else 0,
            quota.max_bandwidth if quota else 0,
            quota.max_duration if quota else 0,
            format_ts(quota.reset_at) if quota else None,
            json.dumps(metadata) if metadata else None,
        )
        try:
            self.db.execute_update(query, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise UserAlreadyExistsError(username)
            raise ValidationError("user", username, str(e))
        return self.get_user(username)

    def find_user_by_username(self, username: Username) -> Optional[User]:
        """Finds a user by username, returning None when absent."""
        result = self.db.execute_query("SELECT * FROM users WHERE username = ?", (username,))
        return User.from_row(result[0]) if result else None

    def get_user(self, username: Username) -> User:
        user = self.find_user_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return user

    def list_users(self, offset: int = 0, limit: int = 100) -> List[User]:
        """Retrieves users, newest first."""
        query = "SELECT * FROM users ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        return [User.from_row(row) for row in self.db.execute_query(query, (limit, offset))]

    def count_users(self) -> int:
        result = self.db.execute_query("SELECT COUNT(*) AS total FROM users")
        return result[0]['total'] if result else 0

    def _touch(self, username: Username, assignments: str, params: tuple,
               now: Optional[datetime] = None) -> None:
        query = f"UPDATE users SET {assignments}, updated_at = ? WHERE username = ?"
        if self.db.execute_update(query, params + (format_ts(now or utcnow()), username)) == 0:
            raise UserNotFoundError(username)

    def set_enabled(self, username: Username, enabled: bool, now: Optional[datetime] = None) -> None:
        self._touch(username, "enabled = ?", (int(enabled),), now)

    def update_password(self, username: Username, password: str, salt: Optional[str] = None,
                        now: Optional[datetime] = None) -> None:
        self._touch(username, "password = ?, salt = ?", (password, salt), now)

    def update_metadata(self, username: Username, metadata: Metadata,
                        now: Optional[datetime] = None) -> None:
        self._touch(username, "metadata = ?", (json.dumps(metadata) if metadata else None,), now)

    def record_login(self, username: Username, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        self._touch(username, "last_login = ?", (format_ts(now),), now)

    def set_quota_policy(self, username: Username, max_sessions: int, max_bandwidth: int,
                         max_duration: int, reset_period: int,
                         now: Optional[datetime] = None) -> UserQuota:
        """Create or replace the quota ceilings, keeping the live counters."""
        now = now or utcnow()
        with self.db.transaction() as conn:
            row = self._fetch_user_row(conn, username)
            if row["has_quota"]:
                current = row["current_sessions"]
                used = row["used_bandwidth"]
                reset_at = parse_ts(row["reset_at"]) or now + timedelta(seconds=reset_period)
            else:
                # Start tracking from the sessions already open
                current = self._live_session_count(conn, username)
                used = 0
                reset_at = now + timedelta(seconds=reset_period)
            if current > max_sessions:
                raise ValidationError(
                    "max_sessions", max_sessions,
                    f"user currently holds {current} sessions"
                )
            conn.execute(
                """
                UPDATE users SET has_quota = 1, max_sessions = ?, max_bandwidth = ?,
                    max_duration = ?, current_sessions = ?, used_bandwidth = ?,
                    reset_at = ?, updated_at = ?
                WHERE username = ?
                """,
                (max_sessions, max_bandwidth, max_duration, current, used,
                 format_ts(reset_at), format_ts(now), username)
            )
        return UserQuota(max_sessions, max_bandwidth, max_duration, current, used, reset_at)

    def clear_quota(self, username: Username, now: Optional[datetime] = None) -> None:
        self._touch(
            username,
            "has_quota = 0, max_sessions = 0, max_bandwidth = 0, max_duration = 0, "
            "current_sessions = 0, used_bandwidth = 0, reset_at = NULL",
            (),
            now
        )

    def delete_user(self, username: Username) -> bool:
        """Removes a user together with any sessions still open for it."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE username = ?", (username,))
            cursor = conn.execute("DELETE FROM users WHERE username = ?", (username,))
            return cursor.rowcount > 0

    # --- Quota counters ---

    def apply_quota_delta(self, username: Username, session_delta: int, bandwidth_delta: int,
                          now: Optional[datetime] = None) -> Optional[UserQuota]:
        """
        Atomically adjust the live quota counters of one user.

        A positive session delta that would pass ``max_sessions`` raises
        QuotaExceededError and changes nothing. Decrements are floored at 0.
        Bandwidth deltas never fail. Returns the updated quota, or None when
        the user has no quota (nothing is tracked).
        """
        with self.db.transaction() as conn:
            return self.apply_quota_delta_on(conn, username, session_delta, bandwidth_delta, now)

    def apply_quota_delta_on(self, conn: sqlite3.Connection, username: Username, session_delta: int,
                             bandwidth_delta: int, now: Optional[datetime] = None) -> Optional[UserQuota]:
        """Same as apply_quota_delta, inside a transaction the caller already holds."""
        now = now or utcnow()
        row = self._fetch_user_row(conn, username)
        if not row["has_quota"]:
            return None
        current = row["current_sessions"] + session_delta
        if session_delta > 0 and current > row["max_sessions"]:
            raise QuotaExceededError(username, row["current_sessions"], row["max_sessions"])
        current = max(current, 0)
        used = max(row["used_bandwidth"] + bandwidth_delta, 0)
        conn.execute(
            "UPDATE users SET current_sessions = ?, used_bandwidth = ?, updated_at = ? "
            "WHERE username = ?",
            (current, used, format_ts(now), username)
        )
        quota = User.from_row(row).quota
        quota.current_sessions = current
        quota.used_bandwidth = used
        return quota

    def reset_usage_if_due(self, username: Username, reset_period: int,
                           now: Optional[datetime] = None) -> bool:
        """
        Zero ``used_bandwidth`` once ``reset_at`` has passed and move
        ``reset_at`` to the first period boundary after ``now``.

        Returns True only for the call that performed the reset. The session
        counter is re-derived from the live session count at the same time.
        """
        now = now or utcnow()
        with self.db.transaction() as conn:
            row = self._fetch_user_row(conn, username)
            if not row["has_quota"]:
                return False
            reset_at = parse_ts(row["reset_at"])
            if reset_at is None:
                conn.execute(
                    "UPDATE users SET reset_at = ?, updated_at = ? WHERE username = ?",
                    (format_ts(now + timedelta(seconds=reset_period)), format_ts(now), username)
                )
                return False
            if now < reset_at:
                return False
            elapsed_periods = int((now - reset_at).total_seconds() // reset_period) + 1
            next_reset = reset_at + timedelta(seconds=reset_period * elapsed_periods)
            live = min(self._live_session_count(conn, username), row["max_sessions"])
            conn.execute(
                "UPDATE users SET used_bandwidth = 0, current_sessions = ?, reset_at = ?, "
                "updated_at = ? WHERE username = ?",
                (live, format_ts(next_reset), format_ts(now), username)
            )
            return True

    def reconcile_session_count(self, username: Username,
                                now: Optional[datetime] = None) -> Optional[int]:
        """Set ``current_sessions`` to the number of sessions actually open."""
        now = now or utcnow()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT has_quota, max_sessions FROM users WHERE username = ?", (username,)
            ).fetchone()
            if row is None or not row["has_quota"]:
                return None
            live = min(self._live_session_count(conn, username), row["max_sessions"])
            conn.execute(
                "UPDATE users SET current_sessions = ?, updated_at = ? WHERE username = ?",
                (live, format_ts(now), username)
            )
            return live

    def get_total_usage(self) -> int:
        """Get bandwidth used in the current period across all users in bytes."""
        query = "SELECT COALESCE(SUM(used_bandwidth), 0) AS total_usage FROM users"
        result = self.db.execute_query(query)
        return result[0]['total_usage'] if result else 0
