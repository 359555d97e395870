"""
Timezone-aware datetime helpers.

Decision timestamps (approved_date, rejected_date, cancelled_date) and
processed_at are stored in UTC. SQLite hands them back naive.
"""
from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


def now_utc() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; a naive value is taken to already be UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
