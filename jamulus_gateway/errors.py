"""Stable error taxonomy for the Jamulus gateway.

Every failure the gateway can report is a `GatewayError` carrying:
- a stable `code` string suitable for programmatic handling,
- a human readable `message` (returned to HTTP callers verbatim),
- the `http_status` the transport layer should use,
- optional structured `details`.

Subclasses pin the code and status so call sites only supply the message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Backend link
GW_E_TRANSPORT = "GW_E_TRANSPORT"
GW_E_BACKEND_AUTH = "GW_E_BACKEND_AUTH"
GW_E_PROTOCOL = "GW_E_PROTOCOL"

# Caller
GW_E_CREDENTIAL = "GW_E_CREDENTIAL"
GW_E_BAD_REQUEST = "GW_E_BAD_REQUEST"
GW_E_PAYLOAD_SHAPE = "GW_E_PAYLOAD_SHAPE"

# Signed tokens
GW_E_TOKEN_FORMAT = "GW_E_TOKEN_FORMAT"
GW_E_TOKEN_SIGNATURE = "GW_E_TOKEN_SIGNATURE"
GW_E_TOKEN_EXPIRED = "GW_E_TOKEN_EXPIRED"
GW_E_TOKEN_NOT_YET_VALID = "GW_E_TOKEN_NOT_YET_VALID"
GW_E_TOKEN_REPLAYED = "GW_E_TOKEN_REPLAYED"
GW_E_TOKEN_METHOD_MISMATCH = "GW_E_TOKEN_METHOD_MISMATCH"

# Startup
GW_E_KEY_FORMAT = "GW_E_KEY_FORMAT"
GW_E_CONFIG = "GW_E_CONFIG"


@dataclass
class GatewayError(Exception):
    """Base gateway exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "http_status": int(self.http_status),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class _PinnedError(GatewayError):
    """GatewayError whose code and status are fixed by the subclass."""

    CODE = GW_E_BAD_REQUEST
    HTTP_STATUS = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(code=self.CODE, message=message, http_status=self.HTTP_STATUS, details=details)


# ---------------------------
# Backend link (server errors)
# ---------------------------

class TransportError(_PinnedError):
    """Connect, write or read failure on the backend connection."""

    CODE = GW_E_TRANSPORT
    HTTP_STATUS = 502


class AuthError(_PinnedError):
    """The backend rejected the authentication handshake."""

    CODE = GW_E_BACKEND_AUTH
    HTTP_STATUS = 502


class ProtocolError(_PinnedError):
    """Malformed framing or response correlation from the backend."""

    CODE = GW_E_PROTOCOL
    HTTP_STATUS = 502


# ---------------------------
# Caller (client errors)
# ---------------------------

class CredentialError(_PinnedError):
    CODE = GW_E_CREDENTIAL
    HTTP_STATUS = 401


class BadRequestError(_PinnedError):
    CODE = GW_E_BAD_REQUEST
    HTTP_STATUS = 400


class PayloadShapeError(_PinnedError):
    CODE = GW_E_PAYLOAD_SHAPE
    HTTP_STATUS = 400


class TokenError(_PinnedError):
    """Base class for signed-token validation failures."""

    CODE = GW_E_TOKEN_FORMAT
    HTTP_STATUS = 401


class TokenFormatError(TokenError):
    CODE = GW_E_TOKEN_FORMAT
    HTTP_STATUS = 400


class SignatureError(TokenError):
    CODE = GW_E_TOKEN_SIGNATURE


class ExpiredError(TokenError):
    CODE = GW_E_TOKEN_EXPIRED


class NotYetValidError(TokenError):
    CODE = GW_E_TOKEN_NOT_YET_VALID


class ReplayError(TokenError):
    CODE = GW_E_TOKEN_REPLAYED


class MethodMismatchError(TokenError):
    CODE = GW_E_TOKEN_METHOD_MISMATCH
    HTTP_STATUS = 403


# ---------------------------
# Startup
# ---------------------------

class KeyFormatError(_PinnedError):
    CODE = GW_E_KEY_FORMAT
    HTTP_STATUS = 500


class ConfigError(_PinnedError):
    CODE = GW_E_CONFIG
    HTTP_STATUS = 500
