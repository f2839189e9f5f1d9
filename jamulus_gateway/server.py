"""
Jamulus Gateway Server

FastAPI front end that exposes a Jamulus server's JSON-RPC API over HTTP.

    POST /rpc/<method path>    X-API-Key required
        JSON-body mode:    {"params": {...}}
        signed-token mode: raw token, Content-Type: application/jwt

The route only parses the HTTP request; everything else happens in
GatewayRequestHandler.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import API_KEY_HEADER
from .config import GatewayConfig
from .errors import BadRequestError, GatewayError
from .handler import GatewayRequestHandler
from .metrics import instrument_fastapi

logger = logging.getLogger("jamulus_gateway")

GATEWAY_BANNER = "This is jamulus-json-rpc-api-gateway"
_TEXT_CONTENT_TYPES = ("application/jwt", "text/plain")


class BannerResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    mode: str
    backend: str


async def read_body(request: Request) -> Any:
    """Decode the request body: raw text for token types, JSON otherwise."""
    raw = await request.body()
    content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BadRequestError("Request body must be UTF-8") from e
    if content_type in _TEXT_CONTENT_TYPES:
        return text.strip()
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError as e:
        raise BadRequestError(f"Request body is not valid JSON: {e}") from e


def create_app(
    config: Optional[GatewayConfig] = None,
    handler: Optional[GatewayRequestHandler] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Without arguments, configuration is read from the environment and the
    verification key (if any) is loaded now, so a bad key fails startup.
    """
    from . import __version__ as gateway_version

    if config is None:
        config = GatewayConfig.from_env()
    if handler is None:
        handler = GatewayRequestHandler.from_config(config)

    app = FastAPI(
        title="Jamulus JSON-RPC API Gateway",
        description="HTTP gateway for the Jamulus JSON-RPC API",
        version=gateway_version,
    )
    app.state.gateway_config = config
    app.state.gateway_handler = handler

    @app.exception_handler(GatewayError)
    async def _gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    instrument_fastapi(app)

    # Request body size limit (checks Content-Length).
    max_request_bytes = config.max_request_bytes

    @app.middleware("http")
    async def _limit_request_size(req: Request, call_next):
        cl = req.headers.get("content-length")
        if cl is not None:
            try:
                too_large = int(cl) > max_request_bytes
            except ValueError:
                return JSONResponse(status_code=400, content=BadRequestError("BAD_CONTENT_LENGTH").as_dict())
            if too_large:
                return JSONResponse(status_code=413, content=BadRequestError("REQUEST_TOO_LARGE").as_dict())
        return await call_next(req)

    @app.get("/", response_model=BannerResponse)
    async def banner():
        return {"message": GATEWAY_BANNER}

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint. Does not contact the backend."""
        return {
            "status": "healthy",
            "mode": handler.mode,
            "backend": config.backend.address,
        }

    @app.post("/rpc/{method:path}")
    async def rpc(
        method: str,
        request: Request,
        x_api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
    ):
        """Forward one JSON-RPC call to the Jamulus backend."""
        # Credentials are checked before the body is even decoded.
        try:
            handler.check_credential(x_api_key)
            body = await read_body(request)
        except GatewayError as e:
            return JSONResponse(status_code=e.http_status, content=e.as_dict())
        payload, status = await handler.handle_authorized(method, body)
        return JSONResponse(status_code=status, content=payload)

    return app


def main():
    """
    Main entry point for the jamulus-gateway command.

    Usage:
        jamulus-gateway                    # Listen on $LISTEN_HOST:$PORT (default 0.0.0.0:3434)
        jamulus-gateway --port 9000        # Custom port
        jamulus-gateway --host 127.0.0.1   # Bind to localhost only
    """
    import argparse

    parser = argparse.ArgumentParser(
        description="Jamulus JSON-RPC API Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    JAMULUS_SECRET      Backend API secret (or absolute path to a file holding it)
    API_KEYS            Comma-separated caller API keys
    JAMULUS_HOST        Backend host (default: 127.0.0.1)
    JAMULUS_PORT        Backend port (default: 22222)
    JWT_PUBLIC_KEY      Enables signed-token mode (PEM, base64 PEM, JWK, or file path)
    PORT / LISTEN_HOST  Listen address (default: 0.0.0.0:3434)
    LOG_LEVEL           Logging level (default: INFO)
        """
    )
    parser.add_argument("--host", default=None, help="Host to bind (default: $LISTEN_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (default: $PORT or 3434)")
    args = parser.parse_args()

    config = GatewayConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    app = create_app(config)
    host = args.host or config.listen_host
    port = args.port or config.port

    logger.info("Starting Jamulus gateway on %s:%s (backend %s, mode %s)",
                host, port, config.backend.address, app.state.gateway_handler.mode)
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower(),
                proxy_headers=os.environ.get("PROXY_HEADERS", "").strip() in ("1", "true", "yes"))
    return 0


# CLI entry point
if __name__ == "__main__":
    import sys
    sys.exit(main() or 0)
