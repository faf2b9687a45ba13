# backend/app/core/errors.py
"""
Domain error taxonomy.

Every failure that can reach a client is one of these classes. The `kind`
is a stable machine-readable string; `message` is deliberately generic.
Storage and cryptography exception text is never copied into either, so a
caller cannot learn anything about other users' records or about why a
signature did not check out.
"""
from typing import Optional


class ExstagiumError(Exception):
    """Base class for errors surfaced to API callers."""

    kind: str = "InternalError"
    status_code: int = 500
    message: str = "Internal server error"
    retryable: bool = False

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.retryable:
            body["retryable"] = True
        return body


class InvalidInput(ExstagiumError):
    kind = "InvalidInput"
    status_code = 400
    message = "Invalid request"


class NotFound(ExstagiumError):
    kind = "NotFound"
    status_code = 404
    message = "Not found"


class NoCredentials(ExstagiumError):
    kind = "NoCredentials"
    status_code = 400
    message = "No credentials registered for this user"


class ChallengeExpiredOrMissing(ExstagiumError):
    kind = "ChallengeExpiredOrMissing"
    status_code = 400
    message = "No valid challenge; start again"


class VerificationFailed(ExstagiumError):
    kind = "VerificationFailed"
    status_code = 400
    message = "Verification failed"


class ReplayDetected(ExstagiumError):
    kind = "ReplayDetected"
    status_code = 401
    message = "Verification failed"


class Unauthorized(ExstagiumError):
    kind = "Unauthorized"
    status_code = 401
    message = "Could not validate credentials"


class Forbidden(ExstagiumError):
    kind = "Forbidden"
    status_code = 403
    message = "Token expired"


class VersionConflict(ExstagiumError):
    kind = "VersionConflict"
    status_code = 409
    message = "Item was modified by another client"


class PersistenceUnavailable(ExstagiumError):
    kind = "PersistenceUnavailable"
    status_code = 503
    message = "Storage temporarily unavailable, retry later"
    retryable = True


# Reported in a batch save response when some entries committed and some did not
PARTIAL_BATCH_FAILURE = "PartialBatchFailure"
