import importlib


def _read_pyproject_version() -> str:
    import re
    from pathlib import Path

    txt = (Path(__file__).resolve().parents[1] / "pyproject.toml").read_text(encoding="utf-8")
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    assert m, "Could not locate [project].version in pyproject.toml"
    return m.group(1)


def test_convenience_imports_work():
    import jamulus_gateway

    # Access via attribute (lazy import)
    assert hasattr(jamulus_gateway, "create_app")
    assert hasattr(jamulus_gateway, "GatewayRequestHandler")

    from jamulus_gateway import BackendRpcClient, TokenAuthenticator, TokenIssuer, create_app  # noqa: F401

    importlib.reload(jamulus_gateway)


def test_unknown_attribute_raises():
    import jamulus_gateway
    import pytest

    with pytest.raises(AttributeError):
        jamulus_gateway.NoSuchThing  # noqa: B018


def test_version_export_matches_pyproject():
    import jamulus_gateway

    assert jamulus_gateway.__version__ == _read_pyproject_version()
