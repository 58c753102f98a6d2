"""Validation utilities."""
from fastapi import HTTPException

from exam_engine.models.db.test import TestKind


def validate_id(name: str, value: str) -> str:
    """Validate ID string (no path separators or blanks)."""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{name} is required")
    cleaned = value.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail=f"{name} is required")
    if "/" in cleaned or "\\" in cleaned or len(cleaned) > 64:
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return cleaned


def validate_test_kind(value: str) -> TestKind:
    """Validate a test kind path segment."""
    try:
        return TestKind(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown test kind: {value}")
