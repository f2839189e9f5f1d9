"""
Gateway configuration loader.

Reads env vars once at startup into an immutable GatewayConfig. Missing or
malformed required values raise ConfigError so the process fails closed
instead of starting half-configured.

Env vars:
  - PORT / LISTEN_HOST: HTTP listen address (default 0.0.0.0:3434)
  - JAMULUS_HOST / JAMULUS_PORT: backend address (default 127.0.0.1:22222)
  - JAMULUS_SECRET: backend API secret, or an absolute path to a file holding it
  - API_KEYS: comma-separated caller API keys (at least one)
  - JWT_PUBLIC_KEY: optional; enables signed-token mode (see keys.py for formats)
  - JAMULUS_CONNECT_TIMEOUT_SECONDS / JAMULUS_IO_TIMEOUT_SECONDS
  - REPLAY_SWEEP_INTERVAL_SECONDS
  - MAX_REQUEST_BYTES
  - LOG_LEVEL
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from .auth import parse_api_keys
from .backend import BackendConfig
from .errors import ConfigError
from .replay import ReplayCacheConfig

logger = logging.getLogger("jamulus_gateway.config")

DEFAULT_PORT = 3434
DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_JAMULUS_HOST = "127.0.0.1"
DEFAULT_JAMULUS_PORT = 22222
DEFAULT_MAX_REQUEST_BYTES = 1048576


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable gateway configuration."""

    backend: BackendConfig
    api_keys: FrozenSet[str]
    jwt_public_key: Optional[str] = None
    port: int = DEFAULT_PORT
    listen_host: str = DEFAULT_LISTEN_HOST
    replay: ReplayCacheConfig = field(default_factory=ReplayCacheConfig)
    max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES
    log_level: str = "INFO"

    @property
    def signed_token_mode(self) -> bool:
        return bool(self.jwt_public_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        env = os.environ if environ is None else environ

        secret_raw = (env.get("JAMULUS_SECRET") or "").strip()
        if not secret_raw:
            raise ConfigError("JAMULUS_SECRET is required")
        secret = resolve_secret(secret_raw)

        api_keys = parse_api_keys(env.get("API_KEYS"))
        if not api_keys:
            raise ConfigError("API_KEYS must contain at least one key")

        backend = BackendConfig(
            host=(env.get("JAMULUS_HOST") or DEFAULT_JAMULUS_HOST).strip(),
            port=_env_int(env, "JAMULUS_PORT", DEFAULT_JAMULUS_PORT),
            secret=secret,
            connect_timeout_seconds=_env_float(env, "JAMULUS_CONNECT_TIMEOUT_SECONDS", 5.0),
            io_timeout_seconds=_env_float(env, "JAMULUS_IO_TIMEOUT_SECONDS", 10.0),
        )

        replay = ReplayCacheConfig.from_env(env)

        jwt_public_key = (env.get("JWT_PUBLIC_KEY") or "").strip() or None

        return cls(
            backend=backend,
            api_keys=api_keys,
            jwt_public_key=jwt_public_key,
            port=_env_int(env, "PORT", DEFAULT_PORT),
            listen_host=(env.get("LISTEN_HOST") or DEFAULT_LISTEN_HOST).strip(),
            replay=replay,
            max_request_bytes=_env_int(env, "MAX_REQUEST_BYTES", DEFAULT_MAX_REQUEST_BYTES),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )


def resolve_secret(value: str) -> str:
    """Return the secret itself, or the trimmed content of the file it names."""
    if os.path.isabs(value) and os.path.exists(value):
        try:
            with open(value, "r", encoding="utf-8") as f:
                secret = f.read().strip()
        except OSError as e:
            raise ConfigError(f"Error reading JAMULUS_SECRET from file: {e}", path=value) from e
        if not secret:
            raise ConfigError("JAMULUS_SECRET file is empty", path=value)
        logger.info("Read Jamulus secret from file: %s", value)
        return secret
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value
