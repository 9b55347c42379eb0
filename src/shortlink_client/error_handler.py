import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import httpx

lib_logger = logging.getLogger("shortlink_client")


class ErrorCode(str, Enum):
    """Machine-readable `code` values of the backend error envelope."""

    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_MALFORMED = "TOKEN_MALFORMED"
    UNKNOWN_IDENTITY = "UNKNOWN_IDENTITY"
    INVALID_SECRET = "INVALID_SECRET"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    IDENTITY_EXISTS = "IDENTITY_EXISTS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Client-side codes, never sent by the backend
    NETWORK_ERROR = "NETWORK_ERROR"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    AUTHENTICATION_LOST = "AUTHENTICATION_LOST"
    REFRESH_FAILED = "REFRESH_FAILED"


class ErrorKind(Enum):
    TRANSIENT = "transient"
    CREDENTIAL_EXPIRED = "credential_expired"
    UNKNOWN_IDENTITY = "unknown_identity"
    INVALID_SECRET = "invalid_secret"
    AUTHENTICATION_LOST = "authentication_lost"
    VALIDATION = "validation"


# 401 codes meaning "the submitted credentials are wrong", not "the session is stale".
# They must reach the caller untouched and never start a refresh.
REFRESH_EXEMPT_CODES = frozenset(
    {
        ErrorCode.UNKNOWN_IDENTITY.value,
        ErrorCode.INVALID_SECRET.value,
        ErrorCode.ACCOUNT_DEACTIVATED.value,
    }
)


class ApiError(Exception):
    """
    Base class for every failure surfaced by the request pipeline.

    Attributes:
        status_code: HTTP status, or None when no response was received
        code: Machine-readable error code (see ErrorCode)
        message: Human-readable message from the backend or the client
        details: Decoded error body, if any
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        super().__init__(message)

    def __str__(self):
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class TransientNetworkError(ApiError):
    """No response was received, the call timed out, or the server answered 5xx."""

    kind = ErrorKind.TRANSIENT


class CredentialExpiredError(ApiError):
    """
    401 with a code outside REFRESH_EXEMPT_CODES.

    Handled by the refresh coordinator plus a single replay. Callers only see it
    wrapped in AuthenticationLostError.
    """

    kind = ErrorKind.CREDENTIAL_EXPIRED


class UnknownIdentityError(ApiError):
    """The backend has no account for the submitted identity."""

    kind = ErrorKind.UNKNOWN_IDENTITY


class InvalidSecretError(ApiError):
    """The identity exists but the submitted secret is wrong."""

    kind = ErrorKind.INVALID_SECRET


class AuthenticationLostError(ApiError):
    """
    Terminal: the session cannot be recovered without a new login.

    Raised when the refresh fails, when a replayed call is rejected again, or when
    a call needs credentials and none are stored.
    """

    kind = ErrorKind.AUTHENTICATION_LOST

    def __init__(self, message: str = "Authentication lost, please log in again", **kwargs):
        kwargs.setdefault("status_code", 401)
        kwargs.setdefault("code", ErrorCode.AUTHENTICATION_LOST.value)
        super().__init__(message, **kwargs)


class ValidationError(ApiError):
    """Any other 4xx. Never retried, never triggers a refresh."""

    kind = ErrorKind.VALIDATION


def mask_credential(token: Optional[str]) -> str:
    """
    Mask a token for safe display in logs and error messages.

    Shows only the last 6 characters (e.g., "...xyz123").
    """
    if not token:
        return "<none>"
    if len(token) > 12:
        return f"...{token[-6:]}"
    return "***"


def _decode_error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def classify_response(
    response: httpx.Response,
    refresh_exempt: bool = False,
    exempt_codes: Optional[Iterable[str]] = None,
) -> ApiError:
    """
    Map a non-2xx response onto the error taxonomy.

    Classification reads only the status code and the machine-readable `code`
    field; the human-readable message is carried along but never inspected.

    Args:
        response: The failed response
        refresh_exempt: True when the request targets an endpoint that must never
            trigger a refresh (login, register, refresh itself)
        exempt_codes: 401 codes that never mean a stale token
            (default: REFRESH_EXEMPT_CODES)

    Returns:
        An ApiError subclass instance (not raised)
    """
    status = response.status_code
    body = _decode_error_body(response)
    code = body.get("code")
    message = body.get("message") or f"HTTP {status} Error"

    if status >= 500:
        return TransientNetworkError(
            message, status_code=status, code=code or ErrorCode.INTERNAL_ERROR.value, details=body
        )

    if code == ErrorCode.UNKNOWN_IDENTITY.value:
        return UnknownIdentityError(message, status_code=status, code=code, details=body)
    if code == ErrorCode.INVALID_SECRET.value:
        return InvalidSecretError(message, status_code=status, code=code, details=body)

    if status == 401:
        if exempt_codes is None:
            exempt_codes = REFRESH_EXEMPT_CODES
        if refresh_exempt or code in exempt_codes:
            return ValidationError(message, status_code=status, code=code, details=body)
        return CredentialExpiredError(
            message, status_code=status, code=code or ErrorCode.TOKEN_INVALID.value, details=body
        )

    return ValidationError(message, status_code=status, code=code or f"HTTP_{status}", details=body)


def classify_transport_error(error: httpx.HTTPError) -> TransientNetworkError:
    """Wrap an httpx transport failure (no response received)."""
    if isinstance(error, httpx.TimeoutException):
        return TransientNetworkError(
            f"Request timed out: {error}", code=ErrorCode.NETWORK_TIMEOUT.value
        )
    return TransientNetworkError(
        f"Network error: {error}", code=ErrorCode.NETWORK_ERROR.value
    )
