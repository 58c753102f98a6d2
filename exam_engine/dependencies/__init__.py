"""FastAPI dependencies."""
from exam_engine.dependencies.auth import get_current_user
from exam_engine.dependencies.clock import get_clock

__all__ = ["get_clock", "get_current_user"]
