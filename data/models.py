import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.types import Username, SessionId, Address, Metadata, DatabaseRow


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def format_ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp so that string order equals time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UserQuota:
    """Quota policy and live counters embedded in a user record.

    ``max_bandwidth`` and ``max_duration`` of 0 mean no ceiling;
    ``max_sessions`` is always enforced.
    """
    max_sessions: int = 0
    max_bandwidth: int = 0
    max_duration: int = 0
    current_sessions: int = 0
    used_bandwidth: int = 0
    reset_at: Optional[datetime] = None

    @property
    def has_bandwidth_ceiling(self) -> bool:
        return self.max_bandwidth > 0

    @property
    def has_duration_ceiling(self) -> bool:
        return self.max_duration > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_sessions": self.max_sessions,
            "max_bandwidth": self.max_bandwidth,
            "max_duration": self.max_duration,
            "current_sessions": self.current_sessions,
            "used_bandwidth": self.used_bandwidth,
            "reset_at": format_ts(self.reset_at),
        }


@dataclass
class User:
    username: Username
    password: str
    enabled: bool
    created_at: datetime
    updated_at: datetime
    last_login: Optional[datetime] = None
    salt: Optional[str] = None
    quota: Optional[UserQuota] = None
    metadata: Metadata = field(default_factory=dict)
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: DatabaseRow) -> 'User':
        quota = None
        if row.get("has_quota"):
            quota = UserQuota(
                max_sessions=row["max_sessions"],
                max_bandwidth=row["max_bandwidth"],
                max_duration=row["max_duration"],
                current_sessions=row["current_sessions"],
                used_bandwidth=row["used_bandwidth"],
                reset_at=parse_ts(row.get("reset_at")),
            )
        return cls(
            id=row.get("id"),
            username=row["username"],
            password=row["password"],
            salt=row.get("salt"),
            enabled=bool(row["enabled"]),
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
            last_login=parse_ts(row.get("last_login")),
            quota=quota,
            metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; the credential never leaves the service."""
        return {
            "username": self.username,
            "enabled": self.enabled,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "last_login": format_ts(self.last_login),
            "quota": self.quota.to_dict() if self.quota else None,
            "metadata": self.metadata,
        }


@dataclass
class Session:
    id: SessionId
    username: Username
    client_addr: Address
    start_time: datetime
    last_active: datetime
    relay_addr: Optional[Address] = None
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0

    @classmethod
    def from_row(cls, row: DatabaseRow) -> 'Session':
        return cls(
            id=row["id"],
            username=row["username"],
            client_addr=row["client_addr"],
            relay_addr=row.get("relay_addr"),
            start_time=parse_ts(row["start_time"]),
            last_active=parse_ts(row["last_active"]),
            bytes_sent=row["bytes_sent"],
            bytes_recv=row["bytes_recv"],
            packets_sent=row["packets_sent"],
            packets_recv=row["packets_recv"],
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "client_addr": self.client_addr,
            "relay_addr": self.relay_addr,
            "start_time": format_ts(self.start_time),
            "last_active": format_ts(self.last_active),
            "bytes_sent": self.bytes_sent,
            "bytes_recv": self.bytes_recv,
            "packets_sent": self.packets_sent,
            "packets_recv": self.packets_recv,
        }
