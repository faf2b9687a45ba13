# backend/app/services/authentication.py
"""
WebAuthn login with signature-counter replay protection.

The counter check is done here, unconditionally, after the verification
primitive has reported success: an assertion whose counter does not exceed
the stored one is a replay or a cloned authenticator and is rejected with
ReplayDetected. The primitive's own view of the counter is never trusted,
because a permissive or misconfigured verifier must not switch clone
detection off.

Persisting the new counter is a compare-and-swap on the value that was
checked, so two concurrent logins from a cloned key cannot both win.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from backend.app.core.clock import utcnow
from backend.app.core.errors import (
    InvalidInput,
    NoCredentials,
    NotFound,
    ReplayDetected,
    VerificationFailed,
)
from backend.app.db.retry import with_retry
from backend.app.models.challenge import PURPOSE_LOGIN
from backend.app.models.user import User
from backend.app.schemas.auth import StartResponse, VerifyResponse
from backend.app.schemas.user import UserSnapshot
from backend.app.security.jwt import issue_token
from backend.app.security.webauthn import (
    AssertionVerified,
    Failed,
    WebAuthnVerifier,
    response_credential_id,
)
from backend.app.services import challenges, credentials, users

logger = logging.getLogger(__name__)


async def start_authentication(
    db: AsyncSession, verifier: WebAuthnVerifier, email: Optional[str]
) -> StartResponse:
    email = users.normalize_email(email)

    async def _unit(s: AsyncSession) -> StartResponse:
        user = await users.get_user_by_email(s, email)

        allowed = await credentials.list_active(s, user.id)
        if not allowed:
            raise NoCredentials()

        challenge, options = verifier.authentication_options(
            allow_ids=[c.credential_id for c in allowed]
        )
        await challenges.issue_challenge(s, user.id, PURPOSE_LOGIN, challenge)
        await s.commit()
        return StartResponse(options=options, user=UserSnapshot.model_validate(user))

    return await with_retry(db, _unit)


async def verify_authentication(
    db: AsyncSession,
    verifier: WebAuthnVerifier,
    user_id: str,
    response: dict,
) -> VerifyResponse:
    """
    Raises:
        ChallengeExpiredOrMissing: no pending login challenge
        InvalidInput: the response names no credential
        NotFound: no active credential with that id belongs to this user
        VerificationFailed: the assertion did not verify
        ReplayDetected: the assertion counter did not advance
    """
    expected = await with_retry(
        db, lambda s: challenges.consume_challenge(s, user_id, PURPOSE_LOGIN)
    )

    credential_id = response_credential_id(response)
    if credential_id is None:
        raise InvalidInput("Credential id is required")

    # Scoped to user_id: never check an assertion against another user's key
    stored = await with_retry(
        db, lambda s: credentials.get_active_for_user(s, user_id, credential_id)
    )
    if stored is None:
        raise NotFound("Credential not found")

    result = await run_in_threadpool(
        verifier.verify_authentication, response, expected, stored.public_key
    )

    if isinstance(result, Failed):
        logger.warning("Assertion verification failed for user %s (%s)", user_id, result.reason)
        raise VerificationFailed()
    if not isinstance(result, AssertionVerified) or result.credential_id != stored.credential_id:
        raise VerificationFailed()

    if result.new_counter <= stored.counter:
        logger.warning(
            "Replay detected for credential %s of user %s: counter %d <= stored %d",
            stored.id, user_id, result.new_counter, stored.counter,
        )
        raise ReplayDetected()

    async def _advance(s: AsyncSession) -> User:
        swapped = await credentials.advance_counter(
            s, stored.id, stored.counter, result.new_counter, utcnow()
        )
        if not swapped:
            # Another login moved the counter (or deactivated the key) first
            logger.warning("Counter race lost for credential %s of user %s", stored.id, user_id)
            raise ReplayDetected()
        user = await users.get_user(s, user_id)
        await s.commit()
        return user

    user = await with_retry(db, _advance)
    logger.info("User %s authenticated", user.id)

    return VerifyResponse(
        verified=True,
        token=issue_token(user.id, user.email),
        user=UserSnapshot.model_validate(user),
    )
