"""Utility modules."""
from exam_engine.utils.json_utils import fingerprint, json_dump, json_load
from exam_engine.utils.time_utils import (
    Clock,
    FrozenClock,
    ServerClock,
    elapsed_seconds,
    ensure_utc,
)

__all__ = [
    "fingerprint",
    "json_dump",
    "json_load",
    "Clock",
    "FrozenClock",
    "ServerClock",
    "elapsed_seconds",
    "ensure_utc",
]
