# chatgate/orchestration/finalizer.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from chatgate.orchestration.redactor import redact_parts
from chatgate.orchestration.stream_handlers import AccumulatedResponse
from chatgate.storage import repo

log = logging.getLogger("app.finalizer")

NO_RESPONSE_CODE = "no-response"
NO_RESPONSE_MESSAGE = "The model did not generate a response. Please try again."


@dataclass
class FinalizeContext:
    thread_id: str
    assistant_message_id: str
    user_id: str
    model_id: str
    model_name: str
    charged: bool
    modality: str = "text"
    started_at: float = 0.0  # time.monotonic() at request start
    title_task: Optional[asyncio.Task] = None


def release_thread(thread_id: str) -> None:
    """Clear the streaming flag; never raises."""
    try:
        repo.update_streaming_state(thread_id, is_live=False, current_stream_id=None)
    except Exception as e:  # noqa: BLE001
        log.error({"event": "finalize.release_failed", "thread_id": thread_id, "error": str(e)})


async def _settle_title(task: Optional[asyncio.Task], thread_id: str) -> None:
    if task is None:
        return
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:  # noqa: BLE001 - naming is best effort
        log.warning({"event": "finalize.title_failed", "thread_id": thread_id, "error": str(e)})


async def finalize_response(ctx: FinalizeContext, result: AccumulatedResponse) -> Dict[str, Any]:
    """Persist the assistant message, record usage and release the thread."""
    try:
        parts = redact_parts(result.parts)
        if not parts:
            parts = [{"type": "error", "error": {"code": NO_RESPONSE_CODE, "message": NO_RESPONSE_MESSAGE}}]
        usage = result.usage if ctx.modality == "text" else None
        metadata = {
            "modelId": ctx.model_id,
            "modelName": ctx.model_name,
            "promptTokens": usage.prompt_tokens if usage else 0,
            "completionTokens": usage.completion_tokens if usage else 0,
            "reasoningTokens": usage.reasoning_tokens if usage else 0,
            "serverDurationMs": int((time.monotonic() - ctx.started_at) * 1000) if ctx.started_at else 0,
            "charged": ctx.charged,
        }
        repo.patch_message(ctx.thread_id, ctx.assistant_message_id, parts=parts, metadata=metadata)
        repo.record_usage_event(
            user_id=ctx.user_id,
            model_id=ctx.model_id,
            prompt_tokens=metadata["promptTokens"],
            completion_tokens=metadata["completionTokens"],
            reasoning_tokens=metadata["reasoningTokens"],
            charged=ctx.charged,
        )
        await _settle_title(ctx.title_task, ctx.thread_id)
        log.info({
            "event": "finalize.done",
            "thread_id": ctx.thread_id,
            "message_id": ctx.assistant_message_id,
            "parts": len(parts),
            **metadata,
        })
        return metadata
    finally:
        release_thread(ctx.thread_id)
