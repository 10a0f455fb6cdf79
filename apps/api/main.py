# apps/api/main.py

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from chatgate.core.errors import ChatError, rate_limit_response
from chatgate.core.logging import configure_logging, request_logging_middleware
from chatgate.core.plans import plan_limits
from chatgate.core.settings import get_settings
from chatgate.orchestration.chat import ChatRequest, prepare_chat, start_chat
from chatgate.orchestration.quota import QuotaDecision
from chatgate.orchestration.redactor import mask_key, mask_provider_keys
from chatgate.orchestration.resumable import STREAMS
from chatgate.providers.registry import MODELS_SHARED
from chatgate.storage import repo
from chatgate.storage.models import Thread, UserSettings

settings = get_settings()
configure_logging(level=settings.log_level, fmt=settings.log_format)

app = FastAPI(title=settings.app_name, version="0.1.0")
log = logging.getLogger("app.api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_logging_middleware)

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return exc.to_response()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg") or "Invalid request"
    return ChatError("bad_request:api", f"{loc}: {msg}" if loc else msg).to_response()


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception({"event": "api.unhandled", "path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


def current_user(request: Request) -> str:
    user_id = (request.headers.get(settings.user_id_header) or "").strip()
    if not user_id:
        raise ChatError("unauthorized:chat")
    return user_id


def _owned_thread(thread_id: str, user_id: str) -> Thread:
    th = repo.get_thread(thread_id)
    if th is None:
        raise ChatError("not_found:chat")
    if th.owner_id != user_id:
        raise ChatError("forbidden:chat")
    return th


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/config")
async def config() -> JSONResponse:
    safe_config = {
        "app_name": settings.app_name,
        "env": settings.app_env,
        "db_dialect": settings.db_dialect,
        "log_level": settings.log_level,
        "user_id_header": settings.user_id_header,
        "providers": {
            p: {"base_url": settings.provider_base_url(p), "internal_key": bool(settings.internal_key(p))}
            for p in ("openai", "anthropic", "google", "groq", "openrouter")
        },
        "limits": {
            "free": plan_limits("free", settings),
            "pro": plan_limits("pro", settings),
        },
        "generation": {
            "max_steps": settings.max_steps,
            "default_image_size": settings.default_image_size,
            "default_title_model": settings.default_title_model,
        },
        "streaming": {
            "heartbeat_sec": settings.stream_heartbeat_sec,
            "resume_grace_sec": settings.stream_resume_grace_sec,
        },
        "models": [
            {"id": m.id, "name": m.name, "mode": m.mode, "abilities": m.abilities} for m in MODELS_SHARED
        ],
    }
    return JSONResponse(content=safe_config)


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/chat")
async def chat(req: ChatRequest, user_id: str = Depends(current_user)):
    prepared = prepare_chat(user_id, req)
    if isinstance(prepared, QuotaDecision):
        return rate_limit_response(prepared.message or "Rate limit exceeded")
    if isinstance(prepared, ChatError):
        return prepared.to_response()
    stream = start_chat(prepared)
    log.info({
        "event": "chat.started",
        "user_id": user_id,
        "thread_id": prepared.allocation.thread_id,
        "stream_id": prepared.stream_id,
        "model": req.model_id,
        "adapter": prepared.resolved.adapter,
        "charged": prepared.resolved.charged,
    })
    return StreamingResponse(stream.subscribe(0), headers=SSE_HEADERS)


@app.get("/chat/{thread_id}/stream")
async def resume_stream(thread_id: str, skip: int = 0, user_id: str = Depends(current_user)):
    _owned_thread(thread_id, user_id)
    stream = STREAMS.for_thread(thread_id)
    if stream is None:
        return Response(status_code=204)
    return StreamingResponse(stream.subscribe(skip), headers=SSE_HEADERS)


@app.post("/chat/streams/{stream_id}/cancel")
async def cancel_stream(stream_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
    stream = STREAMS.get(stream_id)
    if stream is None:
        raise ChatError("not_found:stream", "stream id not found or already completed")
    _owned_thread(stream.thread_id, user_id)
    STREAMS.cancel(stream_id)
    return JSONResponse(content={"status": "cancelling"})


@app.get("/threads/{thread_id}")
async def get_thread(thread_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
    t = _owned_thread(thread_id, user_id)
    return JSONResponse(content={
        "id": t.id,
        "title": t.title,
        "projectId": t.project_id,
        "isLive": bool(t.is_live),
        "currentStreamId": t.current_stream_id,
        "streamIds": [st.id for st in repo.get_streams_by_thread_id(t.id)],
        "streamStartedAt": t.stream_started_at,
        "createdAt": t.created_at.isoformat() if t.created_at else None,
        "updatedAt": t.updated_at.isoformat() if t.updated_at else None,
    })


@app.get("/threads/{thread_id}/messages")
async def get_thread_messages(thread_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
    _owned_thread(thread_id, user_id)
    items = [
        {
            "id": m.message_id,
            "role": m.role,
            "parts": m.parts or [],
            "metadata": m.meta or {},
            "createdAt": m.created_at.isoformat() if m.created_at else None,
        }
        for m in repo.get_messages_by_thread_id(thread_id)
    ]
    return JSONResponse(content={"threadId": thread_id, "messages": items})


@app.get("/usage")
async def usage(timeframe: str = "1d", user_id: str = Depends(current_user)) -> JSONResponse:
    if timeframe not in repo.TIMEFRAME_DAYS:
        raise ChatError("bad_request:api", f"timeframe must be one of {sorted(repo.TIMEFRAME_DAYS)}")
    return JSONResponse(content=repo.usage_stats(user_id, timeframe))


class SettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_provider: Optional[str] = Field(default=None, alias="searchProvider")
    title_generation_model: Optional[str] = Field(default=None, alias="titleGenerationModel")
    customization: Optional[Dict[str, Any]] = None
    core_providers: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="coreProviders")
    custom_providers: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="customProviders")
    custom_models: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="customModels")
    general_providers: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="generalProviders")
    mcp_servers: Optional[List[Dict[str, Any]]] = Field(default=None, alias="mcpServers")


def _settings_out(row: UserSettings) -> Dict[str, Any]:
    return {
        "plan": row.plan,
        "searchProvider": row.search_provider,
        "titleGenerationModel": row.title_generation_model,
        "customization": row.customization or {},
        "coreProviders": mask_provider_keys(row.core_providers or {}),
        "customProviders": mask_provider_keys(row.custom_providers or {}),
        "customModels": row.custom_models or {},
        "generalProviders": mask_provider_keys(row.general_providers or {}),
        "mcpServers": [
            {**s, "headers": {k: mask_key(v) for k, v in (s.get("headers") or {}).items()}}
            for s in (row.mcp_servers or [])
        ],
    }


def _keep_stored_keys(incoming: Dict[str, Dict[str, Any]], stored: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    # a masked key echoed back from GET means "unchanged"
    out: Dict[str, Dict[str, Any]] = {}
    for pid, cfg in incoming.items():
        prev = (stored or {}).get(pid) or {}
        key = cfg.get("key")
        if key and prev.get("key") and key == mask_key(prev["key"]):
            cfg = {**cfg, "key": prev["key"]}
        out[pid] = cfg
    return out


def _keep_stored_headers(incoming: List[Dict[str, Any]], stored: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    by_name = {s.get("name"): s.get("headers") or {} for s in stored}
    out = []
    for srv in incoming:
        prev = by_name.get(srv.get("name"), {})
        headers = {
            k: prev[k] if k in prev and v == mask_key(prev[k]) else v
            for k, v in (srv.get("headers") or {}).items()
        }
        out.append({**srv, "headers": headers})
    return out


@app.get("/settings")
async def get_user_settings(user_id: str = Depends(current_user)) -> JSONResponse:
    return JSONResponse(content=_settings_out(repo.get_user_settings(user_id)))


@app.put("/settings")
async def put_user_settings(payload: SettingsIn, user_id: str = Depends(current_user)) -> JSONResponse:
    current = repo.get_user_settings(user_id)
    data = payload.model_dump(exclude_none=True)
    for field in ("core_providers", "custom_providers", "general_providers"):
        if field in data:
            data[field] = _keep_stored_keys(data[field], getattr(current, field) or {})
    if "mcp_servers" in data:
        data["mcp_servers"] = _keep_stored_headers(data["mcp_servers"], current.mcp_servers or [])
    row = repo.save_user_settings(user_id, data)
    return JSONResponse(content=_settings_out(row))
