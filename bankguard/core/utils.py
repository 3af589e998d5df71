"""
Small time and serialization helpers shared by services
"""
import json
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_years(value: datetime, years: int) -> datetime:
    """Add calendar years; 29 February maps to 28 February in non-leap years"""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def canonical_json(value: Any) -> str:
    """Stable JSON rendering used in canonical texts and fingerprints"""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
