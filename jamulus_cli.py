#!/usr/bin/env python3
"""
Jamulus Gateway - Operator Command Line Interface

Usage:
    jamulus-cli keygen --out-private K --out-public P   Write an Ed25519 keypair (PEM)
    jamulus-cli mint --key K --method M [--params JSON]  Print a signed call token
    jamulus-cli verify --public-key V --method M TOKEN   Check a token as the gateway would
    jamulus-cli call --method M [--params JSON]          Call the backend once (env config)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from jamulus_gateway.backend import BackendRpcClient
from jamulus_gateway.config import GatewayConfig
from jamulus_gateway.errors import GatewayError
from jamulus_gateway.keys import load_public_key
from jamulus_gateway.tokens import TokenAuthenticator, TokenIssuer

logger = logging.getLogger("jamulus_gateway.cli")


def setup_logging(verbose: bool = False):
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S"
    )


def parse_params(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--params must be valid JSON: {e}") from e
    if not isinstance(params, dict):
        raise ValueError("--params must be a JSON object")
    return params


def load_private_key(path: Path) -> Ed25519PrivateKey:
    key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError(f"{path} does not contain an Ed25519 private key")
    return key


def cmd_keygen(args) -> int:
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    out_private = Path(args.out_private)
    out_private.write_bytes(private_pem)
    out_private.chmod(0o600)
    Path(args.out_public).write_bytes(public_pem)
    logger.info("Wrote private key to %s and public key to %s", args.out_private, args.out_public)
    return 0


def cmd_mint(args) -> int:
    try:
        params = parse_params(args.params)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    issuer = TokenIssuer(load_private_key(Path(args.key)))
    token = issuer.issue(
        args.method,
        params,
        ttl_seconds=args.ttl,
        nbf=args.nbf,
        jti=args.jti,
    )
    print(token)
    return 0


def cmd_verify(args) -> int:
    authenticator = TokenAuthenticator(load_public_key(args.public_key))
    try:
        call = authenticator.verify(args.token, args.method)
    except GatewayError as e:
        print(json.dumps(e.as_dict(), indent=2))
        return 1
    print(json.dumps({"valid": True, "params": call.params}, indent=2))
    return 0


def cmd_call(args) -> int:
    try:
        params = parse_params(args.params) or {}
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    config = GatewayConfig.from_env()
    client = BackendRpcClient(config.backend)
    try:
        response = asyncio.run(client.call(args.method, params))
    except GatewayError as e:
        print(json.dumps(e.as_dict(), indent=2))
        return 1
    print(json.dumps(response, indent=2))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Jamulus gateway operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an Ed25519 signing keypair")
    keygen_parser.add_argument("--out-private", required=True, help="Where to write the PKCS8 PEM private key")
    keygen_parser.add_argument("--out-public", required=True, help="Where to write the SPKI PEM public key")
    keygen_parser.set_defaults(func=cmd_keygen)

    mint_parser = subparsers.add_parser("mint", help="Mint a signed call token")
    mint_parser.add_argument("--key", required=True, help="Path to the PEM private key")
    mint_parser.add_argument("--method", required=True, help="RPC method the token authorizes, e.g. jamulus/getMode")
    mint_parser.add_argument("--params", default=None, help="JSON object of call params")
    mint_parser.add_argument("--ttl", type=int, default=60, help="Lifetime in seconds (gateway accepts at most 300)")
    mint_parser.add_argument("--nbf", type=int, default=None, help="Not-before unix timestamp")
    mint_parser.add_argument("--jti", default=None, help="Token id (default: random)")
    mint_parser.set_defaults(func=cmd_mint)

    verify_parser = subparsers.add_parser("verify", help="Verify a call token")
    verify_parser.add_argument("--public-key", required=True, help="Public key value (PEM, base64 PEM, JWK, or file path)")
    verify_parser.add_argument("--method", required=True, help="Method the token is presented against")
    verify_parser.add_argument("token", help="The token to verify")
    verify_parser.set_defaults(func=cmd_verify)

    call_parser = subparsers.add_parser("call", help="Call the Jamulus backend once using env configuration")
    call_parser.add_argument("--method", required=True, help="RPC method, e.g. jamulus/getMode")
    call_parser.add_argument("--params", default=None, help="JSON object of call params")
    call_parser.set_defaults(func=cmd_call)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
