"""
Application Errors

Every failure a service can report is one of the classes below. Services raise
them without knowing about HTTP; main.py registers a single exception handler
that renders them as JSON with the matching status code.

Kinds:
- ValidationError (400): malformed input
- Unauthorized (401): missing, invalid or expired credential
- Forbidden (403): authenticated but lacking role or ownership
- NotFound (404): resource absent or intentionally hidden
- InvalidState (400): transition not permitted from the current status
- Conflict (409): optimistic concurrency race lost, safe to retry
- ConditionsUnmet (400): release attempted before all conditions are satisfied
- ServiceUnavailable (503): persistence timed out or is unreachable, safe to retry
"""

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "internal_error"
    retryable: bool = False
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_error"
    default_detail = "Invalid request"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "unauthorized"
    default_detail = "Unauthorized"


class ChallengeNotFound(Unauthorized):
    kind = "challenge_not_found"
    default_detail = "No active challenge for this wallet"


class ChallengeExpired(Unauthorized):
    kind = "challenge_expired"
    default_detail = "Challenge expired"


class SignatureInvalid(Unauthorized):
    kind = "signature_invalid"
    default_detail = "Invalid signature"


class TokenInvalid(Unauthorized):
    kind = "token_invalid"
    default_detail = "Invalid token"


class TokenExpired(Unauthorized):
    kind = "token_expired"
    default_detail = "Token expired"


class TokenRevoked(Unauthorized):
    kind = "token_revoked"
    default_detail = "Token revoked"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "forbidden"
    default_detail = "Forbidden"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"
    default_detail = "Not found"


class InvalidState(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "invalid_state"
    default_detail = "Transition not allowed from the current status"


class ConditionsUnmet(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "conditions_unmet"
    default_detail = "Not all conditions are satisfied"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    kind = "conflict"
    retryable = True
    default_detail = "Escrow was modified concurrently, retry the request"


class ServiceUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    kind = "service_unavailable"
    retryable = True
    default_detail = "Storage temporarily unavailable, retry the request"
