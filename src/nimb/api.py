"""FastAPI application and routes for the NIMB proxy."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from .config import request_logger
from .backends import call_backend
from .models import ChatCompletionRequest
from .settings import apply_settings_update
from .state import AppState
from .streaming import relay_stream
from .translator import build_upstream_request, map_completion
from .tunnel import TunnelError
from .utils import error_response, read_json_object

logger = logging.getLogger(__name__)

SERVICE_NAME = "NIMB Proxy"

proxy_router = APIRouter()
control_router = APIRouter()


def get_state(request: Request) -> AppState:
    return request.app.state.proxy


def json_response(content: Any, status_code: int = 200) -> Response:
    return Response(
        content=json.dumps(content),
        status_code=status_code,
        media_type="application/json",
    )


@proxy_router.get("/")
async def index():
    return {
        "message": SERVICE_NAME,
        "endpoints": {
            "health": "/health",
            "models": "/v1/models",
            "chat": "/v1/chat/completions",
        },
    }


@proxy_router.get("/health")
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint with the full runtime picture."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "model": state.settings.current_model,
        "api_key_configured": bool(state.settings.api_key),
        "config": state.settings.public_dict(),
        "stats": state.stats.snapshot(),
        "tunnel": state.tunnel.state(),
        "uptime_seconds": state.uptime_seconds,
        "setupComplete": state.setup_complete,
    }


@proxy_router.get("/v1/models")
async def list_models(state: AppState = Depends(get_state)):
    data = []
    if state.settings.current_model:
        data.append(
            {"id": state.settings.current_model, "object": "model", "owned_by": "nim"}
        )
    return {"object": "list", "data": data}


@proxy_router.post("/v1/chat/completions")
@proxy_router.post("/chat/completions")
async def proxy_chat_completions(
    request: Request, state: AppState = Depends(get_state)
) -> Response:
    """
    Primary proxy endpoint for chat completions:
    - Translates the client request onto the upstream schema
    - Relays streaming responses frame by frame
    - Maps non-streaming responses onto the client envelope
    """
    stats = state.stats
    settings = state.settings

    if not settings.api_key:
        stats.record_error("API key not configured", 500)
        return error_response(
            "API key not configured.", "configuration_error", 500
        )

    request_data = await read_json_object(request)
    if request_data is None:
        stats.record_error("Invalid JSON", 400)
        return error_response(
            "Request body must be a JSON object", "invalid_request_error", 400
        )

    try:
        chat_request = ChatCompletionRequest.model_validate(request_data)
    except ValidationError as e:
        message = f"Invalid request: {e.errors()[0]['msg']}"
        stats.record_error(message, 400)
        return error_response(message, "invalid_request_error", 400)

    upstream_request = build_upstream_request(chat_request, settings)
    response = await call_backend(
        state.upstream_url,
        settings.api_key,
        upstream_request,
        state.timeout,
        transport=state.transport,
    )

    if response["status_code"] != 200:
        message = response["content"]["error"]["message"]
        stats.record_error(message, response["status_code"])
        return error_response(message, "api_error", response["status_code"])

    if response["is_stream"]:
        stats.record_request()
        return StreamingResponse(
            relay_stream(response["content"], settings, stats),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    try:
        completion = map_completion(response["content"], chat_request.model, settings)
    except (TypeError, ValueError) as e:
        message = f"Unexpected upstream response: {str(e)}"
        logger.error(message)
        stats.record_error(message, 500)
        return error_response(message, "api_error", 500)

    stats.record_request()
    stats.add_usage(completion["usage"])
    if settings.log_requests:
        request_logger.info("[Proxy] Done")
    return json_response(completion)


@control_router.get("/config")
async def get_config(state: AppState = Depends(get_state)):
    return state.settings.public_dict()


@control_router.post("/config")
async def update_config(request: Request, state: AppState = Depends(get_state)):
    update = await read_json_object(request)
    if update is None:
        return error_response(
            "Request body must be a JSON object", "invalid_request_error", 400
        )
    applied = apply_settings_update(state.settings, update)
    logger.info(f"Updated settings: {', '.join(applied) or 'nothing'}")
    state.persist()
    return {"success": True, "config": state.settings.public_dict()}


@control_router.get("/model")
async def get_model(state: AppState = Depends(get_state)):
    return {"model": state.settings.current_model}


@control_router.post("/model")
async def set_model(request: Request, state: AppState = Depends(get_state)):
    body = await read_json_object(request) or {}
    model = body.get("model")
    if not isinstance(model, str) or not model.strip():
        return error_response("Invalid model", "invalid_request_error", 400)
    state.settings.current_model = model.strip()
    state.persist()
    logger.info(f"Model set to {state.settings.current_model}")
    return {"success": True, "model": state.settings.current_model}


@control_router.post("/apikey")
async def set_api_key(request: Request, state: AppState = Depends(get_state)):
    body = await read_json_object(request) or {}
    api_key = body.get("apiKey")
    if not isinstance(api_key, str) or not api_key.strip():
        return error_response("Invalid key", "invalid_request_error", 400)
    state.settings.api_key = api_key.strip()
    state.setup_complete = True
    state.persist()
    logger.info("API key updated")
    return {"success": True}


@control_router.get("/stats")
async def get_stats(state: AppState = Depends(get_state)):
    return state.stats.snapshot()


@control_router.post("/stats/reset")
async def reset_stats(state: AppState = Depends(get_state)):
    state.stats.reset()
    return {"success": True}


@control_router.get("/tunnel")
async def get_tunnel(state: AppState = Depends(get_state)):
    return state.tunnel.state()


@control_router.post("/tunnel/start")
async def start_tunnel(state: AppState = Depends(get_state)):
    try:
        tunnel = await state.tunnel.start()
    except TunnelError as e:
        return error_response(str(e), "configuration_error", 500)
    return {"success": True, **tunnel}


@control_router.post("/tunnel/stop")
async def stop_tunnel(state: AppState = Depends(get_state)):
    tunnel = await state.tunnel.stop()
    return {"success": True, **tunnel}


async def not_found(request: Request) -> Response:
    return error_response(
        f"Endpoint {request.url.path} not found.", "invalid_request_error", 404
    )


def create_app(state: AppState) -> FastAPI:
    """Build the proxy application around an explicit state object."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await state.tunnel.stop()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.proxy = state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(proxy_router)
    app.include_router(control_router)
    app.add_api_route(
        "/{path:path}",
        not_found,
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        include_in_schema=False,
    )
    return app

