"""Codex OpenAI Gateway — FastAPI application entry point.

Accepts OpenAI-compatible /v1/chat/completions and /v1/responses requests,
rewrites them into the upstream Codex /v1/responses shape and relays the
answer, either as one JSON body or as a live event stream.
"""

import json
import os
import time
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request

from codex_gateway.config.settings import Settings, get_settings
from codex_gateway.logging.audit import (
    generate_request_id,
    get_audit_logger,
    request_id_var,
    setup_logging,
)
from codex_gateway.logging.middleware import RequestLoggingMiddleware
from codex_gateway.proxy.context import ForwardContext
from codex_gateway.proxy.errors import INVALID_REQUEST_ERROR, gateway_error
from codex_gateway.proxy.forwarder import UpstreamForwarder
from codex_gateway.proxy.models import ModelMapper
from codex_gateway.proxy.rewrite import rewrite_direct, rewrite_from_chat
from codex_gateway.security.credentials import OVERRIDE_LOCATOR, Credential, resolve_credential

VERSION = "1.0.0"

# Request bodies larger than this are cut in debug previews
BODY_PREVIEW_LIMIT = 64 * 1024


def load_credential(settings: Settings) -> Credential:
    """Resolve the upstream token once at startup; raises CredentialError."""
    logger = get_audit_logger()
    credential = resolve_credential(settings.codex_upstream_bearer, settings.auth_path)
    if credential.locator == OVERRIDE_LOCATOR:
        logger.info("Using upstream bearer token from CODEX_UPSTREAM_BEARER")
    else:
        # Only the entry path is logged, never the token
        logger.info(
            "Loaded Codex token",
            extra={"audit_data": {
                "auth_path": settings.auth_path,
                "entry": credential.locator,
            }},
        )
    return credential


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    state = app.state
    logger = setup_logging(state.settings)

    owns_forwarder = state.forwarder is None
    if owns_forwarder:
        settings = state.settings or get_settings()
        credential = state.credential or load_credential(settings)
        state.forwarder = UpstreamForwarder.from_settings(settings, credential)

    logger.info(
        "Gateway started",
        extra={"audit_data": {"upstream": state.forwarder.upstream_url, "version": VERSION}},
    )
    yield

    if owns_forwarder:
        await state.forwarder.close()
        state.forwarder = None
    logger.info("Gateway stopped")


def _settings(request: Request) -> Settings:
    return request.app.state.settings or get_settings()


def get_mapper(request: Request) -> ModelMapper:
    return request.app.state.mapper


def get_forwarder(request: Request) -> UpstreamForwarder:
    forwarder = request.app.state.forwarder
    if forwarder is None:
        raise RuntimeError("Gateway forwarder is not initialized; was the lifespan run?")
    return forwarder


router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@router.get("/v1/models")
@router.get("/models")
async def list_models(mapper: ModelMapper = Depends(get_mapper)):
    """OpenAI-compatible model listing built from the mapping table."""
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": name, "object": "model", "created": created, "owned_by": "codex-gateway"}
            for name in mapper.external_names()
        ],
    }


@router.post("/v1/responses")
@router.post("/responses")
async def responses(
    request: Request,
    mapper: ModelMapper = Depends(get_mapper),
    forwarder: UpstreamForwarder = Depends(get_forwarder),
):
    """Already upstream-shaped: only the model name is translated."""
    body = await _read_json_object(request)
    if body is None:
        return gateway_error(400, INVALID_REQUEST_ERROR, "Invalid JSON payload.")
    return await _forward(request, forwarder, rewrite_direct(body, mapper))


@router.post("/v1/chat/completions")
@router.post("/chat/completions")
async def chat_completions(
    request: Request,
    mapper: ModelMapper = Depends(get_mapper),
    forwarder: UpstreamForwarder = Depends(get_forwarder),
):
    """Bridged to the upstream responses API (messages -> input)."""
    body = await _read_json_object(request)
    if body is None:
        return gateway_error(400, INVALID_REQUEST_ERROR, "Invalid JSON payload.")
    return await _forward(request, forwarder, rewrite_from_chat(body, mapper))


async def _forward(request: Request, forwarder: UpstreamForwarder, payload: dict):
    # API Gateway + Mangum buffers responses, so SSE cannot work on Lambda
    if payload.get("stream") is True and os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        return gateway_error(
            400, INVALID_REQUEST_ERROR, "Streaming is not supported in Lambda deployments."
        )

    ctx = ForwardContext(
        request_id=request_id_var.get() or generate_request_id(),
        receive=request.receive,
    )
    return await forwarder.forward(ctx, payload)


async def _read_json_object(request: Request) -> dict | None:
    """Parse the body as a JSON object; None when it is malformed or not an object."""
    raw = await request.body()

    if _settings(request).log_request_bodies and raw:
        preview = raw[:BODY_PREVIEW_LIMIT].decode("utf-8", errors="replace")
        if len(raw) > BODY_PREVIEW_LIMIT:
            preview += "...(truncated)"
        get_audit_logger().debug(
            "Request body",
            extra={"audit_data": {"request_body": preview}},
        )

    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def create_app(
    settings: Settings | None = None,
    mapper: ModelMapper | None = None,
    forwarder: UpstreamForwarder | None = None,
    credential: Credential | None = None,
) -> FastAPI:
    """Build the gateway. Anything not injected is created from settings at startup."""
    app = FastAPI(
        title="Codex OpenAI Gateway",
        description="OpenAI-compatible gateway in front of the Codex responses API",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.mapper = mapper or ModelMapper()
    app.state.forwarder = forwarder
    app.state.credential = credential
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(router)
    return app


app = create_app()
