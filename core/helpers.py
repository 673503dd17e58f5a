"""
Core Helpers

Timestamp handling, identifier generation and small numeric utilities
shared by the services.
"""

import random
import string
import time
from datetime import datetime, timezone
from typing import Optional, Union

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a database timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def epoch_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 6) -> str:
    return "".join(random.choice(_ID_ALPHABET) for _ in range(length))


def generate_id(prefix: str, length: int = 6) -> str:
    """e.g. generate_id("conv") -> "conv_1737000000000_k3j9x2"."""
    return f"{prefix}_{epoch_ms()}_{random_suffix(length)}"


def round_money(amount: float) -> float:
    return round(float(amount) + 0.0, 2)


def days_between(start: Union[str, datetime], end: Union[str, datetime, None] = None) -> int:
    """Whole days from start to end (default: now)."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end) if end is not None else utc_now()
    return int((end_dt - start_dt).total_seconds() // 86400)


def compact(d: dict) -> dict:
    """Drop keys whose value is None (partial updates)."""
    return {k: v for k, v in d.items() if v is not None}
