"""Jamulus JSON-RPC API gateway package.

This package exposes a Jamulus server's JSON-RPC API over HTTP using:

- Per-caller API keys
- Optional signed call tokens (Ed25519, single use, method bound)
- A fresh authenticated backend connection for every call

Convenience imports
------------------
The package intentionally avoids heavy import-time side effects. For convenience,
these are available as top-level imports:

    from jamulus_gateway import create_app, GatewayRequestHandler

    from jamulus_gateway import BackendRpcClient, TokenAuthenticator, TokenIssuer

All of the above are loaded lazily.
"""

from __future__ import annotations

import re
from importlib import import_module
from importlib.metadata import PackageNotFoundError, version as _dist_version
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Version discovery for a source checkout that was never installed.

    The project version is a simple `version = "..."` field in
    `pyproject.toml`, so a regex parse is enough.
    """

    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    try:
        txt = pyproject.read_text(encoding="utf-8")
    except OSError:
        return None
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    return m.group(1) if m else None


def _installed_version() -> str | None:
    try:
        return _dist_version("jamulus-rpc-gateway")
    except PackageNotFoundError:
        return None


# Installed distribution metadata first; a plain source checkout falls back to
# pyproject.toml.
__version__ = (
    _installed_version()
    or _read_version_from_pyproject()
    or "1.0.0"
)

# Public symbols we want to make available at the package root.
__all__ = [
    "__version__",
    "create_app",
    "GatewayRequestHandler",
    "BackendRpcClient",
    "TokenAuthenticator",
    "TokenIssuer",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "create_app": ("jamulus_gateway.server", "create_app"),
    "GatewayRequestHandler": ("jamulus_gateway.handler", "GatewayRequestHandler"),
    "BackendRpcClient": ("jamulus_gateway.backend", "BackendRpcClient"),
    "TokenAuthenticator": ("jamulus_gateway.tokens", "TokenAuthenticator"),
    "TokenIssuer": ("jamulus_gateway.tokens", "TokenIssuer"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        # Cache the resolved attribute on the module for faster future access.
        globals()[name] = value
        return value
    raise AttributeError(f"module 'jamulus_gateway' has no attribute {name!r}")


def __dir__() -> list[str]:
    # Include lazy exports for IDE/autocomplete.
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
