# backend/app/security/webauthn.py
"""
WebAuthn options generation and response verification (py_webauthn).

The cryptographic checks themselves (attestation/assertion signatures,
client data, RP id hash) are delegated to py_webauthn. This module only
adapts them to a tagged result:

    RegistrationVerified | Failed       from verify_registration()
    AssertionVerified    | Failed       from verify_authentication()

Callers branch with isinstance(); no library exception escapes, and the
`reason` on Failed is for server logs only, never for API responses.

Signature-counter policy is NOT delegated. The library is handed a stored
counter of 0 so that it never rejects on counter grounds; the caller
compares the returned counter against its own stored value.
"""
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationVerified:
    credential_id: str  # base64url
    public_key: str  # base64url
    sign_count: int
    aaguid: Optional[str] = None


@dataclass(frozen=True)
class AssertionVerified:
    credential_id: str  # base64url
    new_counter: int


@dataclass(frozen=True)
class Failed:
    reason: str


RegistrationResult = Union[RegistrationVerified, Failed]
AssertionResult = Union[AssertionVerified, Failed]


def response_credential_id(response: dict) -> Optional[str]:
    """Credential id (base64url) a client response refers to, if present."""
    if not isinstance(response, dict):
        return None
    raw = response.get("rawId") or response.get("id")
    if not isinstance(raw, str) or not raw:
        return None
    try:
        # Normalise padding / alphabet differences between clients
        return bytes_to_base64url(base64url_to_bytes(raw))
    except (ValueError, TypeError):
        return None


class WebAuthnVerifier:
    """Relying-party bound wrapper around py_webauthn."""

    def __init__(self, rp_id: str, rp_name: str, origin: str):
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origin = origin

    def registration_options(
        self,
        webauthn_user_id: str,
        email: str,
        exclude_ids: List[str],
    ) -> Tuple[str, dict]:
        """Build creation options; returns (base64url challenge, JSON-ready options)."""
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=bytes.fromhex(webauthn_user_id),
            user_name=email,
            user_display_name=email.split("@")[0],
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(cid))
                for cid in exclude_ids
            ],
        )
        return bytes_to_base64url(options.challenge), json.loads(options_to_json(options))

    def authentication_options(self, allow_ids: List[str]) -> Tuple[str, dict]:
        """Build request options; returns (base64url challenge, JSON-ready options)."""
        options = generate_authentication_options(
            rp_id=self.rp_id,
            allow_credentials=[
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(cid))
                for cid in allow_ids
            ],
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        return bytes_to_base64url(options.challenge), json.loads(options_to_json(options))

    def verify_registration(self, response: dict, expected_challenge: str) -> RegistrationResult:
        try:
            verified = verify_registration_response(
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_origin=self.origin,
                expected_rp_id=self.rp_id,
            )
        except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
            return Failed(reason=type(exc).__name__)

        return RegistrationVerified(
            credential_id=bytes_to_base64url(verified.credential_id),
            public_key=bytes_to_base64url(verified.credential_public_key),
            sign_count=verified.sign_count,
            aaguid=verified.aaguid or None,
        )

    def verify_authentication(
        self,
        response: dict,
        expected_challenge: str,
        public_key: str,
    ) -> AssertionResult:
        try:
            verified = verify_authentication_response(
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_origin=self.origin,
                expected_rp_id=self.rp_id,
                credential_public_key=base64url_to_bytes(public_key),
                # Counter monotonicity is enforced by the caller
                credential_current_sign_count=0,
            )
        except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
            return Failed(reason=type(exc).__name__)

        return AssertionVerified(
            credential_id=bytes_to_base64url(verified.credential_id),
            new_counter=verified.new_sign_count,
        )


def get_verifier() -> WebAuthnVerifier:
    return WebAuthnVerifier(
        rp_id=settings.RP_ID,
        rp_name=settings.RP_NAME,
        origin=settings.RP_ORIGIN,
    )
