"""API route modules."""
from exam_engine.routes import challenges, clock, live_tests, sessions

__all__ = ["challenges", "clock", "live_tests", "sessions"]
