# breach_registry/core/auth.py
"""
Request-scoped dependencies.

Authentication happens upstream (gateway / session layer). By the time a
request reaches the registry the caller's identity has been resolved and
is forwarded in the X-User-ID header.
"""
from typing import Optional

from fastapi import Header, HTTPException, status

from breach_registry.db.session import SessionLocal


def get_db():
    """Yield a DB session and make sure it's closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    if len(user_id) > 64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID is too long",
        )
    return user_id
