# backend/app/services/registration.py
"""
WebAuthn registration.

start_registration  -> find-or-create the user, issue a registration challenge
verify_registration -> consume the challenge, verify the attestation, bind the
                       new credential and hand out a bearer token
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from backend.app.core.errors import VerificationFailed
from backend.app.db.retry import with_retry
from backend.app.models.challenge import PURPOSE_REGISTRATION
from backend.app.models.credential import Credential
from backend.app.models.user import User
from backend.app.schemas.auth import StartResponse, VerifyResponse
from backend.app.schemas.user import UserSnapshot
from backend.app.security.jwt import issue_token
from backend.app.security.webauthn import Failed, RegistrationVerified, WebAuthnVerifier
from backend.app.services import challenges, credentials, users

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "Unknown Device"


async def start_registration(
    db: AsyncSession, verifier: WebAuthnVerifier, email: Optional[str]
) -> StartResponse:
    email = users.normalize_email(email)

    async def _unit(s: AsyncSession) -> StartResponse:
        user = await users.get_or_create_user(s, email)

        # Authenticators already bound to this user must not register twice
        existing = await credentials.list_active(s, user.id)
        challenge, options = verifier.registration_options(
            webauthn_user_id=user.webauthn_user_id,
            email=user.email,
            exclude_ids=[c.credential_id for c in existing],
        )

        await challenges.issue_challenge(s, user.id, PURPOSE_REGISTRATION, challenge)
        await s.commit()
        return StartResponse(options=options, user=UserSnapshot.model_validate(user))

    return await with_retry(db, _unit)


async def verify_registration(
    db: AsyncSession,
    verifier: WebAuthnVerifier,
    user_id: str,
    response: dict,
    device_name: Optional[str] = None,
) -> VerifyResponse:
    """
    Raises:
        ChallengeExpiredOrMissing: no pending registration challenge
        VerificationFailed: the attestation did not verify, or the
            authenticator is already bound to an account
    """
    # Committed on its own: the challenge is gone whatever happens next
    expected = await with_retry(
        db, lambda s: challenges.consume_challenge(s, user_id, PURPOSE_REGISTRATION)
    )

    result = await run_in_threadpool(verifier.verify_registration, response, expected)

    if isinstance(result, Failed):
        logger.warning("Registration verification failed for user %s (%s)", user_id, result.reason)
        raise VerificationFailed()
    if not isinstance(result, RegistrationVerified):
        raise VerificationFailed()

    async def _bind(s: AsyncSession) -> User:
        user = await users.get_user(s, user_id)
        s.add(
            Credential(
                user_id=user.id,
                credential_id=result.credential_id,
                public_key=result.public_key,
                counter=0,
                device_name=device_name or DEFAULT_DEVICE_NAME,
                aaguid=result.aaguid,
            )
        )
        try:
            await s.flush()
        except IntegrityError:
            # credential_id is globally unique
            await s.rollback()
            logger.warning("Credential already registered, rejected for user %s", user_id)
            raise VerificationFailed()
        await s.commit()
        return user

    user = await with_retry(db, _bind)
    logger.info("Registered credential for user %s", user.id)

    return VerifyResponse(
        verified=True,
        token=issue_token(user.id, user.email),
        user=UserSnapshot.model_validate(user),
    )
