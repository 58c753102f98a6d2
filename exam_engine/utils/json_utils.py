"""JSON serialization utilities."""
import hashlib
import json


def json_dump(payload: object) -> str:
    """Serialize object to compact JSON string."""
    return json.dumps(payload, ensure_ascii=False)


def json_load(data: str | None, default: object = None) -> object:
    """Deserialize JSON string to object, return default on empty or bad input."""
    if not data:
        return default
    try:
        return json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return default


def fingerprint(payload: object) -> str:
    """Stable SHA-256 of a JSON-serializable payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
