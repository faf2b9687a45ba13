# backend/app/schemas/auth.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, Field

from backend.app.schemas.user import CamelModel, UserSnapshot


class StartRequest(CamelModel):
    """Body of /auth/register/start and /auth/login/start."""
    email: EmailStr


class RegisterVerifyRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    # Raw PublicKeyCredential JSON from navigator.credentials.create()
    credential: Dict[str, Any]
    device_name: Optional[str] = Field(default=None, max_length=255)


class LoginVerifyRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    # Raw PublicKeyCredential JSON from navigator.credentials.get()
    credential: Dict[str, Any]


class StartResponse(CamelModel):
    options: Dict[str, Any]
    user: UserSnapshot


class VerifyResponse(CamelModel):
    verified: bool
    token: str
    user: UserSnapshot


class CredentialInfo(CamelModel):
    id: str
    device_name: Optional[str] = None
    aaguid: Optional[str] = None
    counter: int
    created_at: datetime
    last_used_at: Optional[datetime] = None


class CredentialListResponse(CamelModel):
    credentials: List[CredentialInfo]


class SuccessResponse(CamelModel):
    success: bool
