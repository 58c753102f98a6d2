"""Trusted clock dependency; tests override it with a frozen clock."""
from exam_engine.utils.time_utils import Clock, ServerClock

_server_clock = ServerClock()


def get_clock() -> Clock:
    return _server_clock
