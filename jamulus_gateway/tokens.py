"""
Signed, method-bound, single-use call tokens.

A token is a compact JWS (``header.payload.signature``, base64url segments)
signed with Ed25519 (``alg: EdDSA``). The payload authorizes exactly one call:

    {
      "method": "jamulus/getMode",   # must equal the invoked method path
      "params": {...},               # optional, must be an object
      "exp": 1760000000,             # required, at most MAX_FUTURE_EXP_SECONDS ahead
      "nbf": 1759999990,             # optional
      "jti": "..."                   # required, single use
    }

Security Properties:
- Unforgeable without the private key (gateway holds only the public key)
- Short-lived: exp is capped, which also bounds the replay cache
- Single use: jti is recorded before the remaining checks run, so a token that
  fails a later check is still consumed
- Bound to one method path: a token for A is useless against B

Validation runs in a fixed order and the first failing check determines the
error type, so callers can tell malformed, expired and replayed tokens apart.
"""

from __future__ import annotations

import json
import math
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .errors import (
    ExpiredError,
    MethodMismatchError,
    NotYetValidError,
    PayloadShapeError,
    ReplayError,
    SignatureError,
    TokenFormatError,
)
from .keys import b64url_decode, b64url_encode
from .replay import ReplayCache

TOKEN_ALGORITHM = "EdDSA"
MAX_FUTURE_EXP_SECONDS = 300


@dataclass(frozen=True)
class AuthorizedCall:
    """Parameters a verified token authorizes for its method."""

    params: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    # bool is a subclass of int; a JSON true is not a timestamp.
    # json.loads also accepts NaN and Infinity; neither is a timestamp.
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _parse_json(raw: bytes, what: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise TokenFormatError(f"Invalid JWT {what} encoding") from e


class TokenAuthenticator:
    """Verifies call tokens against one public key and a shared replay cache."""

    def __init__(
        self,
        public_key: Ed25519PublicKey,
        replay_cache: Optional[ReplayCache] = None,
        *,
        clock: Callable[[], float] = time.time,
        max_future_exp_seconds: int = MAX_FUTURE_EXP_SECONDS,
    ):
        self.public_key = public_key
        self.replay_cache = replay_cache if replay_cache is not None else ReplayCache()
        self.clock = clock
        self.max_future_exp_seconds = int(max_future_exp_seconds)

    def _now(self) -> int:
        return int(self.clock())

    def verify(self, token: Any, expected_method: str) -> AuthorizedCall:
        # 1) input
        if not isinstance(token, str) or len(token) == 0:
            raise TokenFormatError("Expected JWT body")

        # 2) structure
        segments = token.strip().split(".")
        if len(segments) != 3:
            raise TokenFormatError("Invalid JWT format")
        header_segment, payload_segment, signature_segment = segments
        try:
            header_raw, payload_raw, signature = (b64url_decode(s) for s in segments)
        except ValueError as e:
            raise TokenFormatError("Invalid JWT format") from e

        # 3) header / algorithm
        header = _parse_json(header_raw, "header")
        if not isinstance(header, dict) or header.get("alg") != TOKEN_ALGORITHM:
            raise TokenFormatError("Invalid JWT algorithm")

        # 4) signature
        signed_data = f"{header_segment}.{payload_segment}".encode("ascii")
        try:
            self.public_key.verify(signature, signed_data)
        except InvalidSignature as e:
            raise SignatureError("Invalid JWT signature") from e

        # 5) expiry
        payload = _parse_json(payload_raw, "payload")
        if not isinstance(payload, dict):
            raise TokenFormatError("JWT payload must be an object")
        now = self._now()
        exp = payload.get("exp")
        if not _is_number(exp):
            raise TokenFormatError("JWT payload missing exp")
        if exp <= now:
            raise ExpiredError("JWT expired")
        if exp - now > self.max_future_exp_seconds:
            raise ExpiredError("JWT exp too far in the future", max_future_exp_seconds=self.max_future_exp_seconds)

        # 6) not-before
        nbf = payload.get("nbf")
        if nbf is not None and (not _is_number(nbf) or nbf > now):
            raise NotYetValidError("JWT not yet valid")

        # 7) single use
        jti = payload.get("jti")
        if not isinstance(jti, str) or not jti:
            raise TokenFormatError("JWT payload missing jti")
        self.replay_cache.maybe_sweep(now)
        if not self.replay_cache.check_and_remember(jti, exp, now):
            raise ReplayError("JWT has already been used")

        # 8) method binding
        method = payload.get("method")
        if not isinstance(method, str) or not method:
            raise MethodMismatchError("JWT payload missing method")
        if method != expected_method:
            raise MethodMismatchError("JWT method mismatch", expected=expected_method)

        # 9) params shape
        params = payload.get("params")
        if "params" in payload and not isinstance(params, dict):
            raise PayloadShapeError("JWT params must be an object")

        # 10)
        return AuthorizedCall(params=params or {})


class TokenIssuer:
    """
    Mints call tokens.

    The gateway itself never signs; this exists for operators (``jamulus-cli
    mint``) and for tests. The private key should live with whoever authorizes
    calls, not with the gateway.
    """

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        *,
        clock: Callable[[], float] = time.time,
        default_ttl_seconds: int = 60,
    ):
        self.private_key = private_key
        self.clock = clock
        self.default_ttl_seconds = default_ttl_seconds

    def issue(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        ttl_seconds: Optional[int] = None,
        nbf: Optional[int] = None,
        jti: Optional[str] = None,
        extra_claims: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = int(self.clock())
        payload: Dict[str, Any] = {
            "method": method,
            "exp": now + int(ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds),
            "jti": jti or secrets.token_urlsafe(16),
        }
        if params is not None:
            payload["params"] = params
        if nbf is not None:
            payload["nbf"] = int(nbf)
        if extra_claims:
            payload.update(extra_claims)
        return self.sign_payload(payload)

    def sign_payload(self, payload: Dict[str, Any], header: Optional[Dict[str, Any]] = None) -> str:
        """Sign an arbitrary payload as a compact JWS."""
        hdr = header if header is not None else {"alg": TOKEN_ALGORITHM, "typ": "JWT"}
        header_segment = b64url_encode(json.dumps(hdr, separators=(",", ":")).encode("utf-8"))
        payload_segment = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        signature = self.private_key.sign(f"{header_segment}.{payload_segment}".encode("ascii"))
        return f"{header_segment}.{payload_segment}.{b64url_encode(signature)}"
