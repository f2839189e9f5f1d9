"""
Jamulus JSON-RPC backend client.

Wire format
-----------
Newline-delimited JSON over a raw TCP stream. Outbound:

    {"jsonrpc": "2.0", "method": "...", "params": {...}, "id": "<uuid>"}\\n

Inbound, exactly one of result/error:

    {"jsonrpc": "2.0", "id": "<uuid>", "result": ...}\\n
    {"jsonrpc": "2.0", "id": "<uuid>", "error": {"code": -32000, "message": "..."}}\\n

Every call opens a fresh connection, authenticates with
``jamulus/apiAuth``, sends the caller's request, returns the matching
response and closes the connection. Nothing is pooled or shared between
calls, so the client holds no per-call state and needs no locking.

Only one request is outstanding on a connection at a time, so a response whose
id does not match the request in flight means the stream is out of step with
us; it is reported as a ProtocolError rather than buffered. Server-pushed
notifications (a ``method`` and no ``id``) are not responses and are skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .errors import AuthError, ProtocolError, TransportError

logger = logging.getLogger("jamulus_gateway.backend")

JSONRPC_VERSION = "2.0"
AUTH_METHOD = "jamulus/apiAuth"
# Upper bound on one response line; longer frames are a protocol violation.
MAX_FRAME_BYTES = 1024 * 1024

Connector = Callable[..., Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


@dataclass(frozen=True)
class BackendConfig:
    host: str = "127.0.0.1"
    port: int = 22222
    secret: str = ""
    connect_timeout_seconds: float = 5.0
    io_timeout_seconds: float = 10.0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_envelope(method: str, params: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params,
        "id": request_id or new_request_id(),
    }


def encode_frame(envelope: Dict[str, Any]) -> bytes:
    # ASCII escapes: caller strings may hold lone surrogates that UTF-8 cannot encode.
    return (json.dumps(envelope, separators=(",", ":")) + "\n").encode("utf-8")


def is_notification(message: Dict[str, Any]) -> bool:
    return "method" in message and "id" not in message


def decode_frame(line: bytes) -> Dict[str, Any]:
    """Parse one line and check it is a well-formed RPC response or notification."""
    try:
        message = json.loads(line.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Backend sent a frame that is not valid JSON: {e}") from e
    if not isinstance(message, dict):
        raise ProtocolError("Backend sent a frame that is not a JSON object")
    if is_notification(message):
        return message
    has_result = "result" in message
    has_error = "error" in message
    if has_result == has_error:
        raise ProtocolError("Backend response must contain exactly one of result or error", id=message.get("id"))
    if has_error:
        err = message["error"]
        if not isinstance(err, dict) or not isinstance(err.get("code"), int) or not isinstance(err.get("message"), str):
            raise ProtocolError("Backend error object must contain an integer code and a string message", id=message.get("id"))
    return message


class _Connection:
    """One backend stream pair plus the timeout policy for using it."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, io_timeout: float):
        self.reader = reader
        self.writer = writer
        self.io_timeout = io_timeout

    async def send(self, envelope: Dict[str, Any]) -> None:
        try:
            self.writer.write(encode_frame(envelope))
            await asyncio.wait_for(self.writer.drain(), timeout=self.io_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError("Timed out writing to Jamulus backend") from e
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Failed writing to Jamulus backend: {e}") from e

    async def read_frame(self) -> Dict[str, Any]:
        try:
            line = await asyncio.wait_for(self.reader.readline(), timeout=self.io_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError("Timed out waiting for Jamulus backend response") from e
        except ValueError as e:
            # StreamReader raises ValueError when a line exceeds its limit.
            raise ProtocolError(f"Backend frame exceeds {MAX_FRAME_BYTES} bytes") from e
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Failed reading from Jamulus backend: {e}") from e
        if not line:
            raise ProtocolError("Backend closed the connection before responding")
        if not line.endswith(b"\n"):
            raise ProtocolError("Backend closed the connection mid-frame")
        return decode_frame(line)

    async def request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        envelope = build_envelope(method, params)
        await self.send(envelope)
        response = await self.read_frame()
        while is_notification(response):
            logger.debug("Ignoring backend notification %s", response.get("method"))
            response = await self.read_frame()
        if response.get("id") != envelope["id"]:
            raise ProtocolError(
                "Backend response id does not match the request in flight",
                expected=envelope["id"],
                received=response.get("id"),
            )
        return response

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            # The stream is already gone; nothing left to release.
            logger.debug("Error while closing backend connection: %s", e)


class BackendRpcClient:
    """Authenticated one-shot JSON-RPC calls against a Jamulus server."""

    def __init__(self, config: BackendConfig, *, connector: Optional[Connector] = None):
        self.config = config
        self._connector: Connector = connector or asyncio.open_connection

    async def _connect(self) -> _Connection:
        cfg = self.config
        try:
            reader, writer = await asyncio.wait_for(
                self._connector(cfg.host, cfg.port, limit=MAX_FRAME_BYTES),
                timeout=cfg.connect_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out connecting to Jamulus backend at {cfg.address}") from e
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Unable to connect to Jamulus backend at {cfg.address}: {e}") from e
        return _Connection(reader, writer, cfg.io_timeout_seconds)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run one authenticated call and return the backend response verbatim.

        A JSON-RPC error from the backend is returned, not raised. Raises
        TransportError, AuthError or ProtocolError for link-level failures.
        The connection is closed on every path, including cancellation.
        """
        started = time.monotonic()
        conn = await self._connect()
        try:
            auth = await conn.request(AUTH_METHOD, {"secret": self.config.secret})
            if "error" in auth:
                raise AuthError(f"Unable to authenticate: {auth['error'].get('message')}", backend_code=auth["error"].get("code"))
            response = await conn.request(method, params or {})
        finally:
            await conn.close()
        logger.debug("Backend call %s completed in %.3fs", method, time.monotonic() - started)
        return response
