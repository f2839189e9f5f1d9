import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from jamulus_mock import JAMULUS_SECRET, MockJamulusServer


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_760_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def signing_key():
    return Ed25519PrivateKey.from_private_bytes(bytes(range(32)))


@pytest.fixture
def public_pem(signing_key) -> str:
    return signing_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def issuer(signing_key, clock):
    from jamulus_gateway.tokens import TokenIssuer

    return TokenIssuer(signing_key, clock=clock)


@pytest.fixture
def jamulus_backend():
    server = MockJamulusServer(secret=JAMULUS_SECRET).start()
    try:
        yield server
    finally:
        server.stop()
