# backend/app/api/v1/endpoints/auth.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.base import get_db
from backend.app.schemas.auth import (
    CredentialListResponse,
    LoginVerifyRequest,
    RegisterVerifyRequest,
    StartRequest,
    StartResponse,
    SuccessResponse,
    VerifyResponse,
)
from backend.app.security.webauthn import WebAuthnVerifier
from backend.app.services import authentication, credentials, registration

router = APIRouter()


# 1. REGISTRATION
@router.post("/register/start", response_model=StartResponse)
async def register_start(
        body: StartRequest,
        db: AsyncSession = Depends(get_db),
        verifier: WebAuthnVerifier = Depends(deps.verifier_dependency),
):
    return await registration.start_registration(db, verifier, body.email)


@router.post("/register/verify", response_model=VerifyResponse)
async def register_verify(
        body: RegisterVerifyRequest,
        db: AsyncSession = Depends(get_db),
        verifier: WebAuthnVerifier = Depends(deps.verifier_dependency),
):
    return await registration.verify_registration(
        db, verifier, body.user_id, body.credential, body.device_name
    )


# 2. LOGIN
@router.post("/login/start", response_model=StartResponse)
async def login_start(
        body: StartRequest,
        db: AsyncSession = Depends(get_db),
        verifier: WebAuthnVerifier = Depends(deps.verifier_dependency),
):
    return await authentication.start_authentication(db, verifier, body.email)


@router.post("/login/verify", response_model=VerifyResponse)
async def login_verify(
        body: LoginVerifyRequest,
        db: AsyncSession = Depends(get_db),
        verifier: WebAuthnVerifier = Depends(deps.verifier_dependency),
):
    return await authentication.verify_authentication(db, verifier, body.user_id, body.credential)


# 3. DEVICE MANAGEMENT
@router.get("/credentials", response_model=CredentialListResponse)
async def list_credentials(
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    return await credentials.list_credentials(db, user_id)


@router.delete("/credentials/{credential_id}", response_model=SuccessResponse)
async def deactivate_credential(
        credential_id: str,
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    await credentials.deactivate_credential(db, user_id, credential_id)
    return SuccessResponse(success=True)
