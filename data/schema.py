"""
SQLite schema for users (with their embedded quota) and live relay sessions.
"""

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    salt TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login TEXT,
    has_quota INTEGER NOT NULL DEFAULT 0,
    max_sessions INTEGER NOT NULL DEFAULT 0 CHECK (max_sessions >= 0),
    max_bandwidth INTEGER NOT NULL DEFAULT 0 CHECK (max_bandwidth >= 0),
    max_duration INTEGER NOT NULL DEFAULT 0 CHECK (max_duration >= 0),
    current_sessions INTEGER NOT NULL DEFAULT 0 CHECK (current_sessions >= 0),
    used_bandwidth INTEGER NOT NULL DEFAULT 0 CHECK (used_bandwidth >= 0),
    reset_at TEXT,
    metadata TEXT,
    CHECK (has_quota = 0 OR current_sessions <= max_sessions)
);

CREATE INDEX IF NOT EXISTS idx_users_enabled ON users (enabled);
CREATE INDEX IF NOT EXISTS idx_users_created_at ON users (created_at DESC);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    client_addr TEXT NOT NULL,
    relay_addr TEXT,
    start_time TEXT NOT NULL,
    last_active TEXT NOT NULL,
    bytes_sent INTEGER NOT NULL DEFAULT 0 CHECK (bytes_sent >= 0),
    bytes_recv INTEGER NOT NULL DEFAULT 0 CHECK (bytes_recv >= 0),
    packets_sent INTEGER NOT NULL DEFAULT 0 CHECK (packets_sent >= 0),
    packets_recv INTEGER NOT NULL DEFAULT 0 CHECK (packets_recv >= 0)
);

CREATE INDEX IF NOT EXISTS idx_sessions_username ON sessions (username);
CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions (start_time DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_last_active ON sessions (last_active, id);
"""
