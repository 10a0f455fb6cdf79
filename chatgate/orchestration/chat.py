# chatgate/orchestration/chat.py
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from chatgate.core.errors import ChatError
from chatgate.core.metrics import CHAT_REQUESTS, STREAM_FATAL
from chatgate.core.settings import get_settings
from chatgate.orchestration.finalizer import FinalizeContext, finalize_response, release_thread
from chatgate.orchestration.history import db_messages_to_core
from chatgate.orchestration.image_generation import (
    IMAGE_TOOL_NAME,
    NO_PROMPT_MESSAGE,
    generate_and_store_image,
    prompt_from_history,
)
from chatgate.orchestration.prompt import build_system_prompt
from chatgate.orchestration.quota import QuotaDecision, check_quota
from chatgate.orchestration.resumable import STREAMS, ResumableStream
from chatgate.orchestration.stream_handlers import StreamMultiplexer
from chatgate.orchestration.threads import ThreadAllocation, create_thread_or_insert_messages
from chatgate.orchestration.title import generate_thread_title
from chatgate.orchestration.tool_runtime import ToolRuntime, run_steps
from chatgate.orchestration.toolkit import ToolRequestContext, effective_tool_ids, get_toolkit
from chatgate.providers.base import CoreMessage, StreamEvent
from chatgate.providers.options import provider_options, supports_system_prompt
from chatgate.providers.registry import FUNCTION_CALLING, ModelRegistry, build_registry
from chatgate.providers.resolver import ResolvedModel, resolve_model
from chatgate.storage import repo
from chatgate.storage.attachments import AttachmentStore, get_attachment_store
from chatgate.storage.models import UserSettings

log = logging.getLogger("app.chat")


class ChatMessageIn(BaseModel):
    id: Optional[str] = None
    role: Literal["user"] = "user"
    parts: List[Dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _content_as_text_part(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("parts") and isinstance(data.get("content"), str):
            data = {**data, "parts": [{"type": "text", "text": data["content"]}]}
        return data


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = Field(default=None, alias="threadId")
    message: Optional[ChatMessageIn] = None
    model_id: str = Field(alias="modelId")
    proposed_assistant_message_id: Optional[str] = Field(default=None, alias="proposedAssistantMessageId")
    enabled_tool_ids: List[str] = Field(default_factory=list, alias="enabledToolIds")
    target_from_message_id: Optional[str] = Field(default=None, alias="targetFromMessageId")
    target_mode: Literal["normal", "edit", "retry"] = Field(default="normal", alias="targetMode")
    image_size: Optional[str] = Field(default=None, alias="imageSize")
    mcp_overrides: Dict[str, bool] = Field(default_factory=dict, alias="mcpOverrides")
    reasoning_effort: Optional[Literal["off", "low", "medium", "high"]] = Field(default=None, alias="reasoningEffort")
    current_document_id: Optional[str] = Field(default=None, alias="currentDocumentId")
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")
    project_id: Optional[str] = Field(default=None, alias="projectId")

    @model_validator(mode="after")
    def _check_target(self) -> "ChatRequest":
        # rejected here so a malformed request never touches settings, quota or threads
        if self.target_from_message_id and not self.thread_id:
            raise ValueError("targetFromMessageId requires threadId")
        if self.target_mode in ("edit", "retry") and not self.target_from_message_id:
            raise ValueError(f"{self.target_mode} requires targetFromMessageId")
        if self.target_mode != "retry" and self.message is None:
            raise ValueError("message is required")
        return self


@dataclass
class PreparedChat:
    user_id: str
    req: ChatRequest
    user_settings: UserSettings
    registry: ModelRegistry
    resolved: ResolvedModel
    allocation: ThreadAllocation
    stream_id: str


def prepare_chat(user_id: str, req: ChatRequest) -> Union[PreparedChat, QuotaDecision, ChatError]:
    """Quota, model resolution and thread allocation, in that order. Rejections are returned."""
    row = repo.get_user_settings(user_id)
    decision = check_quota(user_id, row.plan)
    if not decision.allowed:
        CHAT_REQUESTS.labels(outcome="rate_limited").inc()
        return decision

    registry = build_registry(
        core_providers=row.core_providers, custom_providers=row.custom_providers, custom_models=row.custom_models
    )
    # resolve before allocating so a bad model never leaves an orphan message
    resolved = resolve_model(registry, req.model_id)
    if isinstance(resolved, ChatError):
        CHAT_REQUESTS.labels(outcome="bad_model").inc()
        return resolved

    allocation = create_thread_or_insert_messages(
        author_id=user_id,
        proposed_assistant_id=req.proposed_assistant_message_id,
        user_message=req.message.model_dump() if req.message else None,
        thread_id=req.thread_id,
        target_from_message_id=req.target_from_message_id,
        target_mode=req.target_mode,
        project_id=req.project_id,
    )
    if isinstance(allocation, ChatError):
        CHAT_REQUESTS.labels(outcome=allocation.type).inc()
        return allocation

    stream_id = repo.append_stream_id(allocation.thread_id)
    return PreparedChat(user_id, req, row, registry, resolved, allocation, stream_id)


def start_chat(prepared: PreparedChat, store: Optional[AttachmentStore] = None) -> ResumableStream:
    settings = get_settings()
    stream = STREAMS.create(
        prepared.stream_id,
        prepared.allocation.thread_id,
        heartbeat_sec=settings.stream_heartbeat_sec,
        grace_sec=settings.stream_resume_grace_sec,
    )
    stream.task = asyncio.create_task(run_chat(prepared, stream, store or get_attachment_store()))
    return stream


async def _run_image(p: PreparedChat, mux: StreamMultiplexer, history: List[CoreMessage], store: AttachmentStore,
                     started: float) -> None:
    prompt = prompt_from_history(history)
    if not prompt:
        await mux.handle(StreamEvent("error", {"code": "unknown", "message": NO_PROMPT_MESSAGE}))
        return
    image_size = p.req.image_size or get_settings().default_image_size
    call_id = uuid.uuid4().hex
    await mux.handle(StreamEvent("tool-call", {
        "tool_call_id": call_id, "tool_name": IMAGE_TOOL_NAME, "args": {"imageSize": image_size, "prompt": prompt},
    }))
    repo.patch_message(
        p.allocation.thread_id,
        p.allocation.assistant_message_id,
        parts=mux.acc.snapshot().parts,
        metadata={
            "modelId": p.req.model_id,
            "modelName": p.resolved.model_name,
            "serverDurationMs": int((time.monotonic() - started) * 1000),
            "charged": p.resolved.charged,
        },
    )
    try:
        result: Dict[str, Any] = await generate_and_store_image(
            backend=p.resolved.backend,
            store=store,
            prompt=prompt,
            image_size=image_size,
            model_id=p.req.model_id,
            user_id=p.user_id,
        )
    except Exception as e:  # noqa: BLE001 - reported as the tool result
        log.warning({"event": "image.failed", "thread_id": p.allocation.thread_id, "error": str(e)})
        result = {"error": str(e) or "Unknown error occurred"}
    await mux.handle(StreamEvent("tool-result", {
        "tool_call_id": call_id, "tool_name": IMAGE_TOOL_NAME, "result": result,
    }))


async def _run_text(p: PreparedChat, mux: StreamMultiplexer, history: List[CoreMessage],
                    abort: asyncio.Event) -> None:
    row = p.user_settings
    tool_ctx = ToolRequestContext(
        user_id=p.user_id,
        search_provider=row.search_provider or "tavily",
        general_providers=row.general_providers or {},
        mcp_servers=row.mcp_servers or [],
        mcp_overrides=p.req.mcp_overrides,
        current_document_id=p.req.current_document_id,
        workspace_id=p.req.workspace_id,
    )
    enabled = effective_tool_ids(p.req.enabled_tool_ids, tool_ctx)
    tools = await get_toolkit(enabled, tool_ctx) if FUNCTION_CALLING in p.resolved.abilities else {}

    backend = p.resolved.backend
    messages = list(history)
    if supports_system_prompt(backend.model_id):
        messages.insert(0, CoreMessage(role="system", content=build_system_prompt(enabled, row.customization)))
    options = provider_options(p.resolved.provider_id, backend.model_id, p.req.reasoning_effort)

    async for ev in run_steps(
        backend,
        messages,
        runtime=ToolRuntime(tools, p.user_id),
        options=options,
        abort=abort,
        max_steps=get_settings().max_steps,
    ):
        await mux.handle(ev)


async def run_chat(p: PreparedChat, stream: ResumableStream, store: AttachmentStore) -> None:
    """Producer for one request. The thread is released on every exit path."""
    started = time.monotonic()
    thread_id = p.allocation.thread_id
    mux = StreamMultiplexer(stream.emit, store, p.user_id)
    ctx = FinalizeContext(
        thread_id=thread_id,
        assistant_message_id=p.allocation.assistant_message_id,
        user_id=p.user_id,
        model_id=p.req.model_id,
        model_name=p.resolved.model_name,
        charged=p.resolved.charged,
        modality=p.resolved.modality,
        started_at=started,
    )
    finalized = False
    try:
        repo.update_streaming_state(
            thread_id, is_live=True, stream_started_at=repo.now_ms(), current_stream_id=p.stream_id
        )
        await stream.emit("thread_id", {"threadId": thread_id})
        await stream.emit("stream_id", {"streamId": p.stream_id})
        await stream.emit("model_name", {"modelName": p.resolved.model_name})

        rows = repo.get_messages_by_thread_id(thread_id)
        history = await db_messages_to_core(rows, p.resolved.abilities, store)
        if p.allocation.is_new_thread:
            ctx.title_task = asyncio.create_task(
                generate_thread_title(thread_id, history, p.registry, p.user_settings.title_generation_model)
            )

        if p.resolved.modality == "image":
            await _run_image(p, mux, history, store, started)
        else:
            await _run_text(p, mux, history, stream.abort)

        cancelled = stream.abort.is_set()
        stream.abort.set()
        await mux.join_uploads()
        metadata = await finalize_response(ctx, mux.acc.snapshot())
        finalized = True
        status = "cancelled" if cancelled else "completed"
        CHAT_REQUESTS.labels(outcome=status).inc()
        await stream.emit("finish", {
            "status": status,
            "usage": {k: metadata[k] for k in ("promptTokens", "completionTokens", "reasoningTokens")},
        })
    except Exception as e:  # noqa: BLE001 - any failure ends the stream with an error event
        STREAM_FATAL.inc()
        CHAT_REQUESTS.labels(outcome="fatal").inc()
        log.exception({"event": "stream.fatal", "thread_id": thread_id, "stream_id": p.stream_id, "error": str(e)})
        await stream.emit("error", {"code": "fatal", "message": "Stream error occurred"})
        await stream.emit("finish", {"status": "error"})
    finally:
        stream.abort.set()
        if ctx.title_task is not None and not ctx.title_task.done():
            ctx.title_task.cancel()
        if not finalized:
            release_thread(thread_id)
        await stream.close()
