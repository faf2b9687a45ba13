"""Shared test fixtures for the Exstagium server."""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio
from webauthn.helpers import bytes_to_base64url

from backend.app.db import init_models
from backend.app.db.session import create_engine_for_url, create_sessionmaker
from backend.app.security.webauthn import (
    AssertionVerified,
    Failed,
    RegistrationVerified,
    response_credential_id,
)


class FakeVerifier:
    """
    Stand-in for the WebAuthn verification primitive.

    A "client response" is a dict echoing the challenge it answers:
        {"id": <credential id>, "rawId": <same>, "challenge": <challenge>,
         "counter": <assertion counter>, "fail": <force failure>}
    The fake trusts the echoed counter, i.e. it behaves like a permissive
    verifier that never checks counters itself.
    """

    def __init__(self):
        self.last_exclude = []
        self.last_allow = []

    def registration_options(self, webauthn_user_id, email, exclude_ids):
        self.last_exclude = list(exclude_ids)
        challenge = bytes_to_base64url(secrets.token_bytes(32))
        return challenge, {
            "challenge": challenge,
            "rp": {"id": "localhost", "name": "Exstagium"},
            "user": {"id": webauthn_user_id, "name": email},
            "excludeCredentials": [{"id": cid, "type": "public-key"} for cid in exclude_ids],
        }

    def authentication_options(self, allow_ids):
        self.last_allow = list(allow_ids)
        challenge = bytes_to_base64url(secrets.token_bytes(32))
        return challenge, {
            "challenge": challenge,
            "rpId": "localhost",
            "allowCredentials": [{"id": cid, "type": "public-key"} for cid in allow_ids],
        }

    def verify_registration(self, response, expected_challenge):
        if response.get("fail") or response.get("challenge") != expected_challenge:
            return Failed(reason="challenge mismatch")
        cid = response_credential_id(response)
        return RegistrationVerified(
            credential_id=cid, public_key=f"pk-{cid}", sign_count=0, aaguid=None
        )

    def verify_authentication(self, response, expected_challenge, public_key):
        cid = response_credential_id(response)
        if response.get("fail") or response.get("challenge") != expected_challenge:
            return Failed(reason="challenge mismatch")
        if public_key != f"pk-{cid}":
            return Failed(reason="signature mismatch")
        return AssertionVerified(credential_id=cid, new_counter=response["counter"])


def new_credential_id() -> str:
    return bytes_to_base64url(os.urandom(16))


def client_response(
    credential_id: str, challenge: str, counter: int = 0, fail: bool = False
) -> dict:
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "challenge": challenge,
        "counter": counter,
        "fail": fail,
    }


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    """File-backed SQLite per test, so separate sessions really are separate connections."""
    eng = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_sessionmaker(engine)


class Registered:
    def __init__(self, user_id: str, email: str, credential_id: str, token: str, salt: str):
        self.user_id = user_id
        self.email = email
        self.credential_id = credential_id
        self.token = token
        self.salt = salt


@pytest.fixture
def register(session_factory, verifier):
    """Run a full start/verify registration and return the outcome."""
    from backend.app.services import registration

    async def _register(email: str, credential_id: Optional[str] = None) -> Registered:
        credential_id = credential_id or new_credential_id()
        async with session_factory() as db:
            started = await registration.start_registration(db, verifier, email)
        async with session_factory() as db:
            verified = await registration.verify_registration(
                db,
                verifier,
                started.user.id,
                client_response(credential_id, started.options["challenge"]),
                "Test Device",
            )
        return Registered(
            user_id=started.user.id,
            email=started.user.email,
            credential_id=credential_id,
            token=verified.token,
            salt=started.user.key_derivation_salt,
        )

    return _register
