"""Application configuration and constants."""
import os
from pathlib import Path


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_float_env(name: str, default: float) -> float:
    """Parse float from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Database
DB_DIR = Path(os.environ.get("DB_DIR", Path.cwd() / "data"))
DB_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get(
    "DATABASE_URL", f"sqlite:///{DB_DIR / 'exam_engine.db'}"
)

# Authentication
SECRET_KEY = os.environ.get(
    "SECRET_KEY",
    "CHANGE_ME_IN_PRODUCTION_USE_openssl_rand_hex_32"
)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = _parse_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

# Marking
CORRECT_MARK = _parse_float_env("CORRECT_MARK", 1.0)
WRONG_MARK = _parse_float_env("WRONG_MARK", -0.25)

# Challenge coin stakes
CHALLENGE_WIN_REWARD = _parse_int_env("CHALLENGE_WIN_REWARD", 100)
CHALLENGE_LOSS_PENALTY = _parse_int_env("CHALLENGE_LOSS_PENALTY", 50)
RESOLVE_MAX_RETRIES = _parse_int_env("RESOLVE_MAX_RETRIES", 3)

# Answer persistence
SYNC_MAX_RETRIES = _parse_int_env("SYNC_MAX_RETRIES", 3)
SYNC_RETRY_DELAY_MS = _parse_int_env("SYNC_RETRY_DELAY_MS", 200)

# Question selection: candidates read per requested item
SELECTION_POOL_FACTOR = _parse_int_env("SELECTION_POOL_FACTOR", 3)

# Background sweep for abandoned sessions and overdue challenges
EXPIRY_SWEEP_INTERVAL_SECONDS = _parse_int_env("EXPIRY_SWEEP_INTERVAL_SECONDS", 60)
