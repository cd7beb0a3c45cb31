"""
EAT HTTP Surface

FastAPI application exposing the key-rotation control surface and the
read-only query surface of one verifier:

    GET  /v1/health
    GET  /v1/keys                       root, intermediate, active issuers
    GET  /v1/keys/issuers/{address}     issuer membership
    POST /v1/keys/intermediate          rotate intermediate (caller must be root)
    POST /v1/keys/issuers/activate      activate issuers (caller must be intermediate)
    POST /v1/keys/issuers/deactivate    deactivate issuers (caller must be intermediate)
    POST /v1/tokens/verify              dry-run verification, nothing consumed
    POST /v1/tokens/consumed            replay-guard membership
    GET  /metrics                       Prometheus

Caller identity comes from X-Api-Key (see auth.py), never from the request
body. `require_access_token` turns any route into a token-gated operation.
"""

from __future__ import annotations

import argparse
import logging
import os
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import ApiKeyAuth
from .config import VerifierConfig
from .consumer import AccessTokenConsumer, CallContext
from .errors import EATError, eat_error, EAT_E_UNAUTHORIZED
from .metrics import instrument_fastapi
from .signatures import Signature
from .tokens import AccessToken
from .verifier import AccessTokenVerifier

logger = logging.getLogger("eat_gateway.server")


# ---------------------------
# Request/Response Models
# ---------------------------

class SignatureModel(BaseModel):
    v: int
    r: str
    s: str


class TokenRequest(BaseModel):
    """An access token in wire form plus its signature."""
    token: Dict[str, Any]
    signature: SignatureModel


class RotateIntermediateRequest(BaseModel):
    new_intermediate: str


class IssuersRequest(BaseModel):
    issuers: List[str] = Field(default_factory=list)


class GuardedCallRequest(BaseModel):
    """Body of a token-gated call: (v, r, s, expiry, *args)."""
    v: int
    r: str
    s: str
    expiry: int
    args: List[Any] = Field(default_factory=list)


def _parse_token_request(req: TokenRequest):
    token = AccessToken.from_dict(req.token)
    sig = Signature(v=req.signature.v, r=req.signature.r, s=req.signature.s)
    return token, sig


def _caller_dependency(auth: ApiKeyAuth) -> Callable[..., str]:
    def resolve(x_api_key: Optional[str] = Header(default=None)) -> str:
        address, err = auth.resolve_identity(x_api_key)
        if err:
            raise eat_error(EAT_E_UNAUTHORIZED, err, http_status=401)
        return address  # type: ignore[return-value]
    return resolve


def require_access_token(
    consumer: AccessTokenConsumer,
    auth: ApiKeyAuth,
    signature_text: str,
    arg_types: Sequence[str] = (),
) -> Callable[..., Any]:
    """FastAPI dependency consuming a token for `signature_text`.

    The caller is the API-key identity and the target is the consumer's
    address; only (v, r, s, expiry, args) come from the body. Yields the
    verified `CallContext`; the route body runs only if the token was valid.
    The token is reserved while the route runs and consumed only if the route
    returns normally; if it raises, the reservation is released.
    """
    resolve_caller = _caller_dependency(auth)

    def dependency(body: GuardedCallRequest, caller: str = Depends(resolve_caller)) -> Iterator[CallContext]:
        ctx = consumer.context(caller, signature_text, arg_types, body.args)
        with consumer.authorized(ctx, body.v, body.r, body.s, body.expiry):
            yield ctx

    return dependency


# ---------------------------
# FastAPI App Factory
# ---------------------------

def create_app(
    verifier: Optional[AccessTokenVerifier] = None,
    auth: Optional[ApiKeyAuth] = None,
) -> FastAPI:
    """Create FastAPI application with verifier endpoints."""
    from . import __version__ as eat_version

    if verifier is None:
        verifier = VerifierConfig.from_env().build_verifier()
    if auth is None:
        auth = ApiKeyAuth.load_from_env()

    app = FastAPI(
        title="EAT Verifier",
        description="Ethereum Access Token - key infrastructure and token verification",
        version=eat_version,
    )
    app.state.verifier = verifier
    app.state.auth = auth

    @app.exception_handler(EATError)
    async def _eat_error_handler(request: Request, exc: EATError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    metrics_token = (os.getenv("EAT_METRICS_TOKEN", "") or "").strip()

    def _authorize_metrics(req: Request) -> bool:
        if not metrics_token:
            return True
        authz = (req.headers.get("Authorization") or "").strip()
        if authz.lower().startswith("bearer ") and authz.split(" ", 1)[1].strip() == metrics_token:
            return True
        return (req.headers.get("X-Metrics-Token") or "").strip() == metrics_token

    instrument_fastapi(app, authorize=_authorize_metrics)

    caller_dep = _caller_dependency(auth)

    @app.get("/v1/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "verifier": verifier.address, "chain_id": verifier.domain.chain_id}

    @app.get("/v1/keys")
    async def get_keys() -> Dict[str, Any]:
        return verifier.keys.snapshot()

    @app.get("/v1/keys/issuers/{address}")
    async def get_issuer(address: str) -> Dict[str, Any]:
        return {"address": address, "active": verifier.is_active_issuer(address)}

    @app.post("/v1/keys/intermediate")
    def rotate_intermediate(req: RotateIntermediateRequest, caller: str = Depends(caller_dep)) -> Dict[str, Any]:
        verifier.rotate_intermediate(caller, req.new_intermediate)
        return {"intermediate": verifier.get_intermediate_key()}

    @app.post("/v1/keys/issuers/activate")
    def activate_issuers(req: IssuersRequest, caller: str = Depends(caller_dep)) -> Dict[str, Any]:
        added = verifier.activate_issuers(caller, req.issuers)
        return {"activated": added, "issuers": list(verifier.get_active_issuers())}

    @app.post("/v1/keys/issuers/deactivate")
    def deactivate_issuers(req: IssuersRequest, caller: str = Depends(caller_dep)) -> Dict[str, Any]:
        removed = verifier.deactivate_issuers(caller, req.issuers)
        return {"deactivated": removed, "issuers": list(verifier.get_active_issuers())}

    @app.post("/v1/tokens/verify")
    def verify_token(req: TokenRequest) -> Dict[str, Any]:
        token, sig = _parse_token_request(req)
        return {"valid": verifier.verify(token, *sig.vrs)}

    @app.post("/v1/tokens/consumed")
    def token_consumed(req: TokenRequest) -> Dict[str, Any]:
        token, sig = _parse_token_request(req)
        return {"consumed": verifier.is_consumed(token, *sig.vrs)}

    return app


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Run the verifier API with uvicorn.

    Configuration is read from the environment (see config.py and auth.py).
    """
    parser = argparse.ArgumentParser(description="EAT verifier HTTP server")
    parser.add_argument("--host", default=os.getenv("EAT_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("EAT_PORT", "8000")))
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    import uvicorn

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
