"""
Passwords and access tokens

Access tokens are the only credential the booking endpoints accept. Besides
the user id (sub) they carry the email and display name, which is all a
booking session needs. Every token gets a jti and an aware iat.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from destiine.core.config import settings

ACCESS_TOKEN_TYPE = "access"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """False for a wrong password and for a stored hash bcrypt cannot read."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token. sub is stringified (RFC 7519)."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = dict(claims)
    if "sub" in payload:
        payload["sub"] = str(payload["sub"])
    payload.update(
        type=ACCESS_TOKEN_TYPE,
        jti=uuid.uuid4().hex,
        iat=issued_at,
        exp=issued_at + lifetime,
    )
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Claims of a valid, unexpired access token; None otherwise."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return payload
