"""
NodeGate - Error Taxonomy
===========================
Every failure the control plane reports is a NodeGateError subclass.
Each one carries a human-readable message, a machine-readable code and the
HTTP status the web layer answers with.

Families:
    ValidationError   (400) - missing or malformed input
    AuthError         (401) - missing/invalid/expired token or credential
    NotAllowedError   (403) - valid identity, not authorized
    NotFoundError     (404) - unknown record
    RateLimitExceeded (429) - too many requests from one client
    PersistenceError  (500) - store unavailable or write failed
    TransportError    (503) - remote device unreachable

The FastAPI handler in main.py renders any of these as:
    {"error": message, "code": code, ...extra}
"""

from typing import Any


class NodeGateError(Exception):
    """
    Base class for all control-plane errors.

    Attributes:
        message: Human-readable description (the "error" field of the body).
        code:    Machine-readable error code.
        status:  HTTP status code for the web layer.
        extra:   Additional fields merged into the JSON body.
    """

    status: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """JSON body for this error."""
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


# -- 400 ----------------------------------------------------------------------

class ValidationError(NodeGateError):
    status = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class MissingFields(ValidationError):
    code = "MISSING_FIELDS"
    default_message = "Missing required fields"


class MissingField(ValidationError):
    code = "MISSING_FIELD"
    default_message = "Missing required field"


class InvalidAddress(ValidationError):
    code = "INVALID_ADDRESS"
    default_message = "Invalid wallet address format"


# -- 401 ----------------------------------------------------------------------

class AuthError(NodeGateError):
    status = 401
    code = "AUTH_REQUIRED"
    default_message = "Authentication required"


# Session errors use the code itself as the message so the logout and verify
# bodies read {"error": "TOKEN_MISSING"}.

class TokenMissing(AuthError):
    code = "TOKEN_MISSING"
    default_message = "TOKEN_MISSING"


class TokenInvalid(AuthError):
    code = "TOKEN_INVALID"
    default_message = "TOKEN_INVALID"


class SessionExpired(TokenInvalid):
    code = "SESSION_EXPIRED"
    default_message = "SESSION_EXPIRED"


class RefreshFailed(AuthError):
    code = "REFRESH_FAILED"
    default_message = "REFRESH_FAILED"


class SignatureInvalid(AuthError):
    code = "INVALID_SIGNATURE"
    default_message = "Invalid signature"


class InvalidDeviceCredentials(AuthError):
    code = "INVALID_DEVICE_CREDENTIALS"
    default_message = "Invalid device credentials"


# -- 403 ----------------------------------------------------------------------

class NotAllowedError(NodeGateError):
    status = 403
    code = "NOT_ALLOWED"
    default_message = "Not allowed"


class AddressNotAllowed(NotAllowedError):
    code = "WALLET_NOT_AUTHORIZED"
    default_message = "Your wallet is not authorized to access this system"


class AdminRequired(NotAllowedError):
    code = "ADMIN_REQUIRED"
    default_message = "Admin privileges required"


# -- 404 / 429 ----------------------------------------------------------------

class NotFoundError(NodeGateError):
    status = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class RateLimitExceeded(NodeGateError):
    status = 429
    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Too many requests"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(extra={"retryAfter": retry_after})


# -- 500 ----------------------------------------------------------------------

class PersistenceError(NodeGateError):
    status = 500
    code = "PERSISTENCE_ERROR"
    default_message = "Storage error"


class InvalidationFailed(PersistenceError):
    code = "INVALIDATION_FAILED"
    default_message = "INVALIDATION_FAILED"


# -- 503 ----------------------------------------------------------------------

class TransportError(NodeGateError):
    status = 503
    code = "TRANSPORT_ERROR"
    default_message = "Transport failure"


class DeviceTransportError(TransportError):
    code = "DEVICE_UNREACHABLE"
    default_message = "Device is unreachable"


class DeviceOffline(TransportError):
    code = "DEVICE_OFFLINE"
    default_message = "Device is offline"


# -- Client side --------------------------------------------------------------

class RequestFailed(NodeGateError):
    """
    A routed call reached its target and got a non-2xx answer.

    The status of the remote answer is kept in ``status``, so callers can
    tell "device rejected the request" apart from a DeviceTransportError.
    """

    code = "REQUEST_FAILED"
    default_message = "request failed"

    def __init__(self, message: str, status: int, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body
