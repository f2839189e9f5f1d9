"""
Verification key loading for signed-token mode.

The configured key value may take several shapes. They are tried in a fixed
order and the first one that parses wins:

1. an absolute path to an existing file; its trimmed content is then tried
   against the shapes below
2. inline PEM (``-----BEGIN PUBLIC KEY-----``)
3. base64 of that PEM text
4. a JSON Web Key ``{"kty": "OKP", "crv": "Ed25519", "x": "..."}``

Only Ed25519 keys are accepted; the token format supports no other algorithm.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .errors import KeyFormatError

_PEM_PUBLIC_KEY_RE = re.compile(r"^-----BEGIN PUBLIC KEY-----[\s\S]+-----END PUBLIC KEY-----$")


class KeySource(Enum):
    INLINE_PEM = "inline_pem"
    BASE64_PEM = "base64_pem"
    JWK = "jwk"


@dataclass(frozen=True)
class KeyMaterial:
    """A resolved verification key and the encoding it was found in."""

    source: KeySource
    public_key: Ed25519PublicKey
    from_file: bool = False

    def describe(self) -> str:
        origin = "file" if self.from_file else "inline"
        return f"{origin}:{self.source.value}"


def b64url_decode(value: str) -> bytes:
    """Decode unpadded base64url (RFC 7515 section 2)."""
    if not isinstance(value, str) or not re.fullmatch(r"[A-Za-z0-9_-]*", value):
        raise ValueError("not base64url")
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def is_pem_public_key(content: str) -> bool:
    return bool(_PEM_PUBLIC_KEY_RE.match(content.strip()))


def _load_pem(pem: str) -> Ed25519PublicKey:
    key = serialization.load_pem_public_key(pem.encode("utf-8"))
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError(f"expected an Ed25519 public key, got {type(key).__name__}")
    return key


def _load_jwk(jwk: Dict[str, Any]) -> Ed25519PublicKey:
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValueError("JWK must have kty=OKP and crv=Ed25519")
    x = jwk.get("x")
    if not isinstance(x, str) or not x:
        raise ValueError("JWK is missing the 'x' coordinate")
    raw = b64url_decode(x)
    if len(raw) != 32:
        raise ValueError(f"JWK 'x' must decode to 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def _try_base64_pem(content: str) -> Optional[str]:
    try:
        decoded = base64.b64decode(content, validate=False).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if is_pem_public_key(decoded) else None


def parse_key_material(content: str, *, from_file: bool = False) -> KeyMaterial:
    """Resolve key text (already read from a file, or inline) to a key."""
    trimmed = content.strip()
    origin = "file" if from_file else "inline"
    try:
        if is_pem_public_key(trimmed):
            return KeyMaterial(KeySource.INLINE_PEM, _load_pem(trimmed), from_file)

        decoded_pem = _try_base64_pem(trimmed)
        if decoded_pem is not None:
            return KeyMaterial(KeySource.BASE64_PEM, _load_pem(decoded_pem), from_file)

        jwk = json.loads(trimmed)
        if not isinstance(jwk, dict):
            raise ValueError("JWK must be a JSON object")
        return KeyMaterial(KeySource.JWK, _load_jwk(jwk), from_file)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        # json.JSONDecodeError and cryptography's parse errors are ValueErrors.
        if from_file:
            message = "JWT_PUBLIC_KEY file must contain a PEM public key, base64 PEM, or JWK JSON"
        else:
            message = f"Invalid JWT_PUBLIC_KEY format: {e}"
        raise KeyFormatError(message, source=origin) from e


def load_key_material(raw_value: str) -> KeyMaterial:
    """Resolve a configured key value, following an absolute file path first."""
    if not isinstance(raw_value, str) or not raw_value.strip():
        raise KeyFormatError("JWT_PUBLIC_KEY is empty", source="inline")
    trimmed = raw_value.strip()
    if os.path.isabs(trimmed) and os.path.isfile(trimmed):
        try:
            with open(trimmed, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise KeyFormatError(f"Unable to read JWT_PUBLIC_KEY file: {e}", source="file", path=trimmed) from e
        return parse_key_material(content, from_file=True)
    return parse_key_material(trimmed, from_file=False)


def load_public_key(raw_value: str) -> Ed25519PublicKey:
    return load_key_material(raw_value).public_key
