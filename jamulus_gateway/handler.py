"""
Gateway request orchestration.

``handle(api_key, method, body)`` returns ``(payload, http_status)``. The HTTP
route runs step 1 itself, before decoding the body, and then calls
``handle_authorized(method, body)`` for the rest:

1. check the caller's API key (before anything touches the backend)
2. derive call params, either from a signed token (signed-token mode) or from
   the JSON body's ``params`` (JSON-body mode)
3. forward the call through a fresh authenticated backend connection
4. return the backend response verbatim, or the error envelope

The mode is fixed when the handler is built: a verification key switches on
signed-token mode for every request. A body that does not fit the active mode
is rejected per request.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, Optional, Tuple

from .auth import ApiKeyAuth
from .backend import BackendRpcClient
from .config import GatewayConfig
from .errors import BadRequestError, CredentialError, GatewayError, PayloadShapeError, TokenError, TokenFormatError
from .keys import load_key_material
from .metrics import BackendCallTimer, record_credential_reject, record_token_reject
from .replay import ReplayCache
from .tokens import TokenAuthenticator

logger = logging.getLogger("jamulus_gateway.handler")

MODE_JWT = "jwt"
MODE_JSON = "json"


class GatewayRequestHandler:
    def __init__(
        self,
        api_auth: ApiKeyAuth,
        backend: BackendRpcClient,
        authenticator: Optional[TokenAuthenticator] = None,
    ):
        self.api_auth = api_auth
        self.backend = backend
        self.authenticator = authenticator

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "GatewayRequestHandler":
        """Build the handler; an unusable verification key aborts startup."""
        authenticator = None
        if config.signed_token_mode:
            material = load_key_material(config.jwt_public_key or "")
            logger.info("Signed-token mode enabled (key source: %s)", material.describe())
            authenticator = TokenAuthenticator(material.public_key, ReplayCache(config.replay))
        return cls(
            api_auth=ApiKeyAuth(api_keys=config.api_keys),
            backend=BackendRpcClient(config.backend),
            authenticator=authenticator,
        )

    @property
    def mode(self) -> str:
        return MODE_JWT if self.authenticator is not None else MODE_JSON

    def resolve_params(self, method: str, body: Any) -> Dict[str, Any]:
        """Extract the call params from the request body for the active mode."""
        if self.authenticator is not None:
            try:
                if not isinstance(body, str):
                    raise TokenFormatError("Expected JWT body")
                return self.authenticator.verify(body, method).params
            except (TokenError, PayloadShapeError) as e:
                record_token_reject(e.code)
                logger.warning("Rejected token for %s: %s", method, e.code)
                raise

        if body is None:
            return {}
        if not isinstance(body, dict):
            raise PayloadShapeError("Request body must be a JSON object")
        params = body.get("params")
        if params is None:
            return {}
        if not isinstance(params, dict):
            raise PayloadShapeError("params must be an object")
        return params

    def check_credential(self, api_key: Optional[str]) -> None:
        try:
            self.api_auth.check(api_key)
        except CredentialError:
            record_credential_reject()
            raise

    async def forward(self, method: str, body: Any) -> Dict[str, Any]:
        """Resolve params and call the backend. The caller's key must already be checked."""
        if not method:
            raise BadRequestError("RPC method path is required")

        params = self.resolve_params(method, body)

        with BackendCallTimer() as timer:
            response = await self.backend.call(method, params)
            if "error" in response:
                timer.outcome = "rpc_error"
        return response

    async def dispatch(self, api_key: Optional[str], method: str, body: Any) -> Dict[str, Any]:
        """Run one gateway request; raises GatewayError on failure."""
        self.check_credential(api_key)
        return await self.forward(method, body)

    async def handle(self, api_key: Optional[str], method: str, body: Any) -> Tuple[Dict[str, Any], int]:
        return await self._respond(method, self.dispatch(api_key, method, body))

    async def handle_authorized(self, method: str, body: Any) -> Tuple[Dict[str, Any], int]:
        """Like handle(), for callers that already ran check_credential()."""
        return await self._respond(method, self.forward(method, body))

    async def _respond(self, method: str, call: Awaitable[Dict[str, Any]]) -> Tuple[Dict[str, Any], int]:
        try:
            return await call, 200
        except GatewayError as e:
            if e.http_status >= 500:
                logger.warning("Backend call %s failed: %s", method, e)
            return e.as_dict(), e.http_status
