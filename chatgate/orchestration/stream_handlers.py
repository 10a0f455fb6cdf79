# chatgate/orchestration/stream_handlers.py
from __future__ import annotations

import asyncio
import copy
import json
import logging
import mimetypes
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from chatgate.core.metrics import CHAT_TOKENS, UPLOAD_FAILURES
from chatgate.providers.base import StreamEvent
from chatgate.storage.attachments import AttachmentStore
from chatgate.utils.tokens import usage_int

log = logging.getLogger("app.stream")

Emit = Callable[[str, Dict[str, Any]], Awaitable[None]]


def sse_format(event: str, data: Dict[str, Any]) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n".encode("utf-8")


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int = 0

    def add(self, usage: Optional[Dict[str, Any]]) -> None:
        self.prompt_tokens += usage_int(usage, "prompt_tokens")
        self.completion_tokens += usage_int(usage, "completion_tokens")
        self.reasoning_tokens += usage_int(usage, "reasoning_tokens")

    def as_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "reasoningTokens": self.reasoning_tokens,
        }


@dataclass
class AccumulatedResponse:
    """What the finalizer receives: a detached copy of the parts and the usage totals."""

    parts: List[Dict[str, Any]]
    usage: TokenUsage


@dataclass
class StreamAccumulator:
    parts: List[Dict[str, Any]] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    upload_tasks: List[Tuple[str, asyncio.Task]] = field(default_factory=list)
    _reasoning_started: Optional[float] = None

    def add_text(self, text: str) -> None:
        self.close_reasoning()
        last = self.parts[-1] if self.parts else None
        if last and last["type"] == "text":
            last["text"] += text
        else:
            self.parts.append({"type": "text", "text": text})

    def add_reasoning(self, text: str) -> None:
        last = self.parts[-1] if self.parts else None
        if self._reasoning_started is not None and last and last["type"] == "reasoning":
            last["reasoning"] += text
            return
        self._reasoning_started = time.monotonic()
        self.parts.append({"type": "reasoning", "reasoning": text})

    def close_reasoning(self) -> None:
        if self._reasoning_started is None:
            return
        for part in reversed(self.parts):
            if part["type"] == "reasoning":
                part["duration"] = int((time.monotonic() - self._reasoning_started) * 1000)
                break
        self._reasoning_started = None

    def add_tool_call(self, tool_call_id: str, tool_name: str, args: Any) -> None:
        self.close_reasoning()
        self.parts.append({
            "type": "tool-invocation",
            "toolInvocation": {"state": "call", "toolCallId": tool_call_id, "toolName": tool_name, "args": args},
        })

    def set_tool_result(self, tool_call_id: str, result: Any) -> None:
        for part in self.parts:
            inv = part.get("toolInvocation") if part["type"] == "tool-invocation" else None
            if inv and inv["toolCallId"] == tool_call_id:
                inv["state"] = "result"
                inv["result"] = result
                return
        log.warning({"event": "stream.orphan_tool_result", "tool_call_id": tool_call_id})

    def add_file(self, mime_type: str, data: str, filename: Optional[str] = None) -> None:
        self.close_reasoning()
        part: Dict[str, Any] = {"type": "file", "mimeType": mime_type, "data": data}
        if filename:
            part["filename"] = filename
        self.parts.append(part)

    def add_error(self, code: str, message: str) -> None:
        self.close_reasoning()
        self.parts.append({"type": "error", "error": {"code": code, "message": message}})

    def snapshot(self) -> AccumulatedResponse:
        self.close_reasoning()
        usage = TokenUsage(self.usage.prompt_tokens, self.usage.completion_tokens, self.usage.reasoning_tokens)
        return AccumulatedResponse(parts=copy.deepcopy(self.parts), usage=usage)


class StreamMultiplexer:
    """Turns backend events into wire events while filling a StreamAccumulator."""

    def __init__(self, emit: Emit, store: AttachmentStore, user_id: str) -> None:
        self.emit = emit
        self.store = store
        self.user_id = user_id
        self.acc = StreamAccumulator()

    async def handle(self, ev: StreamEvent) -> None:
        d = ev.data
        if ev.type == "text-delta":
            self.acc.add_text(d["text"])
            await self.emit("text-delta", {"text": d["text"]})
        elif ev.type == "reasoning-delta":
            self.acc.add_reasoning(d["text"])
            await self.emit("reasoning-delta", {"text": d["text"]})
        elif ev.type == "tool-call":
            self.acc.add_tool_call(d["tool_call_id"], d["tool_name"], d.get("args") or {})
            await self.emit("tool_call", {
                "toolCallId": d["tool_call_id"], "toolName": d["tool_name"], "args": d.get("args") or {},
            })
        elif ev.type == "tool-result":
            self.acc.set_tool_result(d["tool_call_id"], d.get("result"))
            await self.emit("tool_result", {
                "toolCallId": d["tool_call_id"], "toolName": d.get("tool_name"), "result": d.get("result"),
            })
        elif ev.type == "file":
            key = self.schedule_upload(d["data"], d.get("mime_type") or "application/octet-stream")
            await self.emit("file", {"mimeType": d.get("mime_type"), "data": key})
        elif ev.type == "finish-step":
            usage = d.get("usage") or {}
            self.acc.usage.add(usage)
            for kind in ("prompt_tokens", "completion_tokens", "reasoning_tokens"):
                CHAT_TOKENS.labels(kind=kind).inc(usage_int(usage, kind))
        elif ev.type == "error":
            message = d.get("message") or "Unknown error"
            self.acc.add_error(d.get("code") or "stream_error", message)
            await self.emit("error", {"code": d.get("code") or "stream_error", "message": message})

    def schedule_upload(self, data: bytes, mime_type: str) -> str:
        ext = mimetypes.guess_extension(mime_type) or ""
        key = f"generations/{self.user_id}/{uuid.uuid4().hex}{ext}"
        self.acc.add_file(mime_type, key)
        task = asyncio.create_task(self.store.upload(key, data, mime_type))
        self.acc.upload_tasks.append((key, task))
        return key

    async def join_uploads(self) -> None:
        """Wait for every upload; each failure is recorded as an error part."""
        pending = list(self.acc.upload_tasks)
        if not pending:
            return
        results = await asyncio.gather(*(t for _, t in pending), return_exceptions=True)
        for (key, _), res in zip(pending, results):
            if isinstance(res, BaseException):
                UPLOAD_FAILURES.inc()
                log.warning({"event": "stream.upload_failed", "key": key, "error": str(res)})
                self.acc.add_error("upload_failed", f"Failed to upload generated file {key}")
