"""Caller authentication for the gateway.

Callers present an API key in the ``X-API-Key`` header. The accepted keys
come from the ``API_KEYS`` env var (comma-separated). There is no
unauthenticated mode: an empty key set is a configuration error.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from .errors import ConfigError, CredentialError

API_KEY_HEADER = "X-API-Key"


def parse_api_keys(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma-separated key list, ignoring blanks around entries."""
    return frozenset(k.strip() for k in (raw or "").split(",") if k.strip())


@dataclass(frozen=True)
class ApiKeyAuth:
    """Set of accepted caller API keys."""

    api_keys: FrozenSet[str]

    def __post_init__(self) -> None:
        if not self.api_keys:
            raise ConfigError("API_KEYS must contain at least one key")

    @classmethod
    def from_keys(cls, keys: Iterable[str]) -> "ApiKeyAuth":
        return cls(api_keys=frozenset(k for k in keys if k))

    def check(self, api_key: Optional[str]) -> None:
        """Raise CredentialError unless api_key is one of the accepted keys."""
        if not api_key:
            raise CredentialError(f"Missing {API_KEY_HEADER} header")
        # Compare against every key so timing does not reveal which one matched.
        matched = False
        for known in self.api_keys:
            if hmac.compare_digest(known.encode("utf-8"), api_key.encode("utf-8")):
                matched = True
        if not matched:
            raise CredentialError(f"Invalid {API_KEY_HEADER} header")
