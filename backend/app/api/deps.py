# backend/app/api/deps.py
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from backend.app.core.config import settings
from backend.app.core.errors import Unauthorized
from backend.app.security.jwt import decode_token
from backend.app.security.webauthn import WebAuthnVerifier, get_verifier

# auto_error=False: a missing header is reported as our own Unauthorized
reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login/verify",
    auto_error=False,
)


async def get_current_user_id(token: str = Depends(reusable_oauth2)) -> str:
    """
    Resolve the caller's user id from the bearer token.

    Stateless: only the token signature and expiry are checked. Whether the
    user still exists is decided by the service that receives the id.
    Missing/invalid token -> 401, expired token -> 403.
    """
    if not token:
        raise Unauthorized("Access token required")
    return decode_token(token).sub


def verifier_dependency() -> WebAuthnVerifier:
    """Overridden in tests with a fake verifier."""
    return get_verifier()
