# backend/app/security/jwt.py
"""
Stateless bearer tokens (HS256 JWT via python-jose).

A token scopes subsequent calls to one user. Validation needs only the
signing key, never the database, so it parallelises freely.
"""
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import ValidationError

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.errors import Forbidden, Unauthorized
from backend.app.schemas.user import TokenPayload


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def issue_token(user_id: str, email: str) -> str:
    return create_access_token({"sub": user_id, "email": email})


def decode_token(token: str) -> TokenPayload:
    """
    Validate a bearer token and return its payload.

    Raises:
        Forbidden: the token was valid but has expired
        Unauthorized: the token is malformed, tampered with, or has no subject
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenPayload(**payload)
    except ExpiredSignatureError:
        raise Forbidden()
    except (JWTError, ValidationError):
        raise Unauthorized()

    if not token_data.sub:
        raise Unauthorized()
    return token_data
