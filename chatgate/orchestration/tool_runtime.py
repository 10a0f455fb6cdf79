# chatgate/orchestration/tool_runtime.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chatgate.core.metrics import TOOL_CALLS
from chatgate.orchestration.toolkit import Tool
from chatgate.providers.base import ChatBackend, CoreMessage, ProviderError, StreamEvent

log = logging.getLogger("app.tools.runtime")


class ToolRuntime:
    def __init__(self, tools: Dict[str, Tool], user_id: str) -> None:
        self.tools = tools
        self.user_id = user_id

    def specs(self) -> List[Dict[str, Any]]:
        return [t.spec() for t in self.tools.values()]

    async def execute(self, tool_name: str, args: Dict[str, Any]) -> Any:
        """Run one tool; failures come back as ``{"error": ...}`` results."""
        tool = self.tools.get(tool_name)
        if tool is None:
            TOOL_CALLS.labels(tool=tool_name, status="unknown").inc()
            return {"error": f"Unknown tool: {tool_name}"}
        try:
            result = await tool.execute(args)
        except Exception as e:  # noqa: BLE001 - tool failures are reported to the model
            TOOL_CALLS.labels(tool=tool_name, status="error").inc()
            log.warning({"event": "tools.failed", "tool": tool_name, "user_id": self.user_id, "error": str(e)})
            return {"error": str(e) or e.__class__.__name__}
        TOOL_CALLS.labels(tool=tool_name, status="ok").inc()
        return result


def _provider_error_message(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return str(exc)
    if isinstance(exc, httpx.RequestError):
        return f"Failed to reach the model provider: {exc}"
    return str(exc)


async def run_steps(
    backend: ChatBackend,
    messages: List[CoreMessage],
    *,
    runtime: Optional[ToolRuntime] = None,
    options: Optional[Dict[str, Any]] = None,
    abort: Optional[asyncio.Event] = None,
    max_steps: int = 100,
) -> AsyncIterator[StreamEvent]:
    """Stream model steps, running requested tools between them until the model stops calling tools."""
    history = list(messages)
    tools = runtime.specs() if runtime and runtime.tools else None
    for step in range(max_steps):
        texts: List[str] = []
        calls: List[Dict[str, Any]] = []
        finish_reason = "stop"
        try:
            async for ev in backend.stream(messages=history, tools=tools, options=options, abort=abort):
                if ev.type == "text-delta":
                    texts.append(ev.data["text"])
                elif ev.type == "tool-call":
                    calls.append(ev.data)
                elif ev.type == "finish-step":
                    finish_reason = ev.data.get("finish_reason") or "stop"
                yield ev
        except (ProviderError, httpx.HTTPError) as exc:
            log.warning({"event": "generation.provider_error", "step": step, "error": str(exc)})
            yield StreamEvent("error", {"code": "provider_error", "message": _provider_error_message(exc)})
            return

        if not calls or runtime is None or finish_reason == "abort" or (abort is not None and abort.is_set()):
            return

        results = await asyncio.gather(*(runtime.execute(c["tool_name"], c.get("args") or {}) for c in calls))
        for call, result in zip(calls, results):
            yield StreamEvent("tool-result", {
                "tool_call_id": call["tool_call_id"], "tool_name": call["tool_name"], "result": result,
            })

        assistant_content: List[Dict[str, Any]] = []
        if texts:
            assistant_content.append({"type": "text", "text": "".join(texts)})
        assistant_content.extend({"type": "tool-call", **c} for c in calls)
        history.append(CoreMessage(role="assistant", content=assistant_content))
        history.append(CoreMessage(role="tool", content=[
            {"type": "tool-result", "tool_call_id": c["tool_call_id"], "tool_name": c["tool_name"], "result": r}
            for c, r in zip(calls, results)
        ]))
    log.info({"event": "generation.max_steps", "max_steps": max_steps})
