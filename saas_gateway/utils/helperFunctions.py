# saas_gateway/utils/helperFunctions.py
import math
import uuid
from datetime import datetime
from typing import Optional


def generate_unique_id(prefix: str = "") -> str:
    """Generate unique ID with optional prefix"""
    unique_id = str(uuid.uuid4()).replace("-", "")[:12]
    return f"{prefix}_{unique_id}" if prefix else unique_id


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp (seconds) to a naive UTC datetime"""
    if ts is None:
        return None
    return datetime.utcfromtimestamp(int(ts))


def days_until(end: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left until *end*, rounded up and never negative"""
    if end is None:
        return None
    now = now or datetime.utcnow()
    return max(0, math.ceil((end - now).total_seconds() / 86400))
