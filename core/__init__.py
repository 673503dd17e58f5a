"""Core package - exports core functionality."""

from .session import (
    conversations,
    get_history,
    save_history,
    clear_history,
    conversation_exists,
)
from .helpers import (
    utc_now,
    now_iso,
    parse_timestamp,
    epoch_ms,
    generate_id,
    random_suffix,
    round_money,
    days_between,
    compact,
)

__all__ = [
    "conversations",
    "get_history",
    "save_history",
    "clear_history",
    "conversation_exists",
    "utc_now",
    "now_iso",
    "parse_timestamp",
    "epoch_ms",
    "generate_id",
    "random_suffix",
    "round_money",
    "days_between",
    "compact",
]
