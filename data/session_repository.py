import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Iterator
from .db import Database
from .schema import SCHEMA
from .models import Session, utcnow, format_ts
from core.types import Username, SessionId, Address
from core.exceptions import SessionNotFoundError

class SessionRepository:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.db.execute_script(SCHEMA)

    def open_session(self, username: Username, client_addr: Address,
                     relay_addr: Optional[Address] = None,
                     now: Optional[datetime] = None) -> Session:
        """Insert a fresh session with zeroed counters."""
        with self.db.transaction() as conn:
            return self.insert_session(conn, username, client_addr, relay_addr, now)

    def insert_session(self, conn: sqlite3.Connection, username: Username, client_addr: Address,
                       relay_addr: Optional[Address] = None,
                       now: Optional[datetime] = None) -> Session:
        """Insert a session inside a transaction the caller already holds."""
        now = now or utcnow()
        session = Session(
            id=uuid.uuid4().hex,
            username=username,
            client_addr=client_addr,
            relay_addr=relay_addr,
            start_time=now,
            last_active=now,
        )
        query = """
        INSERT INTO sessions (id, username, client_addr, relay_addr, start_time, last_active)
        VALUES (?, ?, ?, ?, ?, ?)
        """
        conn.execute(query, (
            session.id, username, client_addr, relay_addr, format_ts(now), format_ts(now)
        ))
        return session

    def find_session(self, session_id: SessionId) -> Optional[Session]:
        result = self.db.execute_query("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return Session.from_row(result[0]) if result else None

    def get_session(self, session_id: SessionId) -> Session:
        session = self.find_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def record_traffic(self, session_id: SessionId, sent_delta: int, recv_delta: int,
                       packets_sent_delta: int = 0, packets_recv_delta: int = 0,
                       now: Optional[datetime] = None) -> Session:
        """Add to the counters of one session and refresh ``last_active``."""
        now = now or utcnow()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions SET
                    bytes_sent = bytes_sent + ?,
                    bytes_recv = bytes_recv + ?,
                    packets_sent = packets_sent + ?,
                    packets_recv = packets_recv + ?,
                    last_active = MAX(last_active, ?)
                WHERE id = ?
                """,
                (sent_delta, recv_delta, packets_sent_delta, packets_recv_delta,
                 format_ts(now), session_id)
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            return Session.from_row(dict(row))

    def delete_session(self, session_id: SessionId) -> Optional[Session]:
        """
        Remove a session. Returns the removed record, or None when another
        caller already removed it; only one caller ever gets the record back.
        """
        with self.db.transaction() as conn:
            return self.remove_session(conn, session_id)

    @staticmethod
    def remove_session(conn: sqlite3.Connection, session_id: SessionId) -> Optional[Session]:
        """Delete a session inside a transaction the caller already holds."""
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return Session.from_row(dict(row))

    def close_session(self, session_id: SessionId) -> Session:
        """Remove a session that must exist; the quota slot is the caller's concern."""
        removed = self.delete_session(session_id)
        if removed is None:
            raise SessionNotFoundError(session_id)
        return removed

    def list_expired(self, inactivity_threshold: int, now: Optional[datetime] = None,
                     batch_size: int = 100) -> Iterator[SessionId]:
        """
        Yield ids of sessions idle longer than ``inactivity_threshold`` seconds,
        oldest ``last_active`` first.

        Reads in keyset-paginated batches so no lock or cursor is held between
        batches; the scan picks up from the last key seen and can stop anywhere.
        """
        now = now or utcnow()
        cutoff = format_ts(now - timedelta(seconds=inactivity_threshold))
        last_key = ("", "")
        while True:
            rows = self.db.execute_query(
                """
                SELECT id, last_active FROM sessions
                WHERE last_active < ? AND (last_active, id) > (?, ?)
                ORDER BY last_active, id
                LIMIT ?
                """,
                (cutoff, last_key[0], last_key[1], batch_size)
            )
            if not rows:
                return
            for row in rows:
                yield row["id"]
            last_key = (rows[-1]["last_active"], rows[-1]["id"])
            if len(rows) < batch_size:
                return

    def purge_stale(self, ttl: int, now: Optional[datetime] = None) -> Dict[Username, int]:
        """
        Store-level expiry: drop sessions idle for more than ``ttl`` seconds.
        Returns how many sessions were dropped per user so their quota
        counters can be reconciled.
        """
        now = now or utcnow()
        cutoff = format_ts(now - timedelta(seconds=ttl))
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT username, COUNT(*) AS dropped FROM sessions "
                "WHERE last_active < ? GROUP BY username",
                (cutoff,)
            ).fetchall()
            conn.execute("DELETE FROM sessions WHERE last_active < ?", (cutoff,))
            return {row["username"]: row["dropped"] for row in rows}

    def list_sessions_for_user(self, username: Username) -> List[Session]:
        query = "SELECT * FROM sessions WHERE username = ? ORDER BY start_time DESC"
        return [Session.from_row(row) for row in self.db.execute_query(query, (username,))]

    def list_sessions(self, offset: int = 0, limit: int = 100) -> List[Session]:
        query = "SELECT * FROM sessions ORDER BY start_time DESC LIMIT ? OFFSET ?"
        return [Session.from_row(row) for row in self.db.execute_query(query, (limit, offset))]

    def get_traffic_summary(self) -> Dict[str, int]:
        """Aggregate counters over all open sessions for the metrics endpoint."""
        query = """
        SELECT
            COUNT(*) AS active_sessions,
            COALESCE(SUM(bytes_sent + bytes_recv), 0) AS bytes_transferred,
            COALESCE(SUM(packets_sent + packets_recv), 0) AS packets_transferred
        FROM sessions
        """
        result = self.db.execute_query(query)
        return result[0] if result else {
            "active_sessions": 0, "bytes_transferred": 0, "packets_transferred": 0
        }
