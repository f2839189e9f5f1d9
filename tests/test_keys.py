import base64
import json

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from jamulus_gateway.errors import KeyFormatError
from jamulus_gateway.keys import (
    KeySource,
    b64url_decode,
    b64url_encode,
    is_pem_public_key,
    load_key_material,
    load_public_key,
)


def _raw(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _jwk(signing_key) -> str:
    x = b64url_encode(_raw(signing_key.public_key()))
    return json.dumps({"kty": "OKP", "crv": "Ed25519", "x": x})


def test_inline_pem(public_pem, signing_key):
    material = load_key_material(public_pem)
    assert material.source is KeySource.INLINE_PEM
    assert material.from_file is False
    assert _raw(material.public_key) == _raw(signing_key.public_key())


def test_base64_pem_is_equivalent_to_inline_pem(public_pem, signing_key):
    encoded = base64.b64encode(public_pem.encode("ascii")).decode("ascii")
    material = load_key_material(encoded)
    assert material.source is KeySource.BASE64_PEM

    # Same key either way: a signature verifies under both.
    sig = signing_key.sign(b"payload")
    load_public_key(public_pem).verify(sig, b"payload")
    material.public_key.verify(sig, b"payload")


def test_jwk_inline(signing_key):
    material = load_key_material(_jwk(signing_key))
    assert material.source is KeySource.JWK
    assert _raw(material.public_key) == _raw(signing_key.public_key())


def test_pem_file_path(tmp_path, public_pem, signing_key):
    path = tmp_path / "jwt.pub"
    path.write_text(public_pem + "\n\n", encoding="utf-8")

    material = load_key_material(str(path))
    assert material.from_file is True
    assert material.source is KeySource.INLINE_PEM
    assert material.describe() == "file:inline_pem"
    assert _raw(material.public_key) == _raw(signing_key.public_key())


def test_file_holding_base64_pem_and_jwk(tmp_path, public_pem, signing_key):
    b64_path = tmp_path / "key.b64"
    b64_path.write_text(base64.b64encode(public_pem.encode("ascii")).decode("ascii"), encoding="utf-8")
    assert load_key_material(str(b64_path)).source is KeySource.BASE64_PEM

    jwk_path = tmp_path / "key.jwk"
    jwk_path.write_text(_jwk(signing_key), encoding="utf-8")
    assert load_key_material(str(jwk_path)).describe() == "file:jwk"


def test_garbage_inline_value_is_rejected():
    with pytest.raises(KeyFormatError) as ei:
        load_key_material("definitely not a key")
    assert ei.value.details["source"] == "inline"
    assert ei.value.message.startswith("Invalid JWT_PUBLIC_KEY format")
    assert ei.value.http_status == 500


def test_garbage_file_is_rejected_with_file_message(tmp_path):
    path = tmp_path / "bad.pub"
    path.write_text("nope", encoding="utf-8")
    with pytest.raises(KeyFormatError) as ei:
        load_key_material(str(path))
    assert ei.value.details["source"] == "file"
    assert "file must contain" in ei.value.message


def test_relative_path_is_not_followed(tmp_path, monkeypatch, public_pem):
    (tmp_path / "jwt.pub").write_text(public_pem, encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    with pytest.raises(KeyFormatError):
        load_key_material("jwt.pub")


def test_empty_value_is_rejected():
    with pytest.raises(KeyFormatError):
        load_key_material("   ")


def test_non_ed25519_pem_is_rejected():
    ec_pem = ec.generate_private_key(ec.SECP256R1()).public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    assert is_pem_public_key(ec_pem)
    with pytest.raises(KeyFormatError):
        load_key_material(ec_pem)


@pytest.mark.parametrize(
    "jwk",
    [
        {"kty": "EC", "crv": "P-256", "x": "AAAA"},
        {"kty": "OKP", "crv": "Ed25519"},
        {"kty": "OKP", "crv": "Ed25519", "x": "AAAA"},
    ],
)
def test_bad_jwk_is_rejected(jwk):
    with pytest.raises(KeyFormatError):
        load_key_material(json.dumps(jwk))


def test_b64url_decode_rejects_foreign_alphabet():
    assert b64url_decode(b64url_encode(b"\xff\xfe")) == b"\xff\xfe"
    with pytest.raises(ValueError):
        b64url_decode("ab+/")
