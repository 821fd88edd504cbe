"""
Cache entry record.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)
_FAR_PAST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A stored response body and its lifetime.

    ``created_by`` records the token that caused the fetch; it is kept for
    auditing and plays no part in lookups.
    """

    key: str
    data: str
    expires_at: datetime
    created_by: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        key: str,
        data: str,
        ttl_seconds: float,
        created_by: str,
        now: Optional[datetime] = None,
    ) -> "CacheEntry":
        """Build an entry that expires ``ttl_seconds`` after ``now``.

        Zero or negative TTLs are accepted and give an entry that is already
        expired (or will be on the next clock tick). TTLs beyond the datetime
        range are clamped to its ends.
        """
        created_at = now or utcnow()
        try:
            expires_at = created_at + timedelta(seconds=ttl_seconds)
        except OverflowError:
            expires_at = _FAR_FUTURE if ttl_seconds > 0 else _FAR_PAST
        return cls(
            key=key,
            data=data,
            expires_at=expires_at,
            created_by=created_by,
            created_at=created_at,
        )

    def current_age(self, now: Optional[datetime] = None) -> int:
        """Current age of the entry in milliseconds."""
        now = now or utcnow()
        return _millis(now - self.created_at)

    def ttl(self) -> int:
        """Max allowed age of the entry in milliseconds."""
        return _millis(self.expires_at - self.created_at)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now > self.expires_at

    def as_json(self) -> Any:
        """Parse the stored payload. Raises ``json.JSONDecodeError``."""
        return json.loads(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view used by the stats endpoint."""
        return {
            "key": self.key,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "created_by": self.created_by,
        }


def _millis(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)
