"""Identity service: users and JWT handling.

Sign-in happens elsewhere; the engine only issues and verifies bearer tokens
that identify a user.
"""
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session as DbSession

from exam_engine.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from exam_engine.models.db.user import User


def create_access_token(user_id: int, expires_minutes: int | None = None) -> str:
    """Create a JWT access token for a user."""
    minutes = ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict | None:
    """Verify and decode a JWT token.

    Returns:
        Decoded token payload or None if invalid.
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def get_user_by_id(db: DbSession, user_id: int) -> User | None:
    """Get user by ID."""
    return db.get(User, user_id)


def get_user_by_email(db: DbSession, email: str) -> User | None:
    """Get user by email."""
    return db.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalar_one_or_none()


def create_user(
    db: DbSession,
    username: str,
    email: str,
    display_name: str | None = None,
    coins: int = 0,
) -> User:
    """Create a new user."""
    user = User(
        username=username,
        email=email.strip().lower(),
        display_name=display_name,
        coins=coins,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
