# chatgate/orchestration/history.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from chatgate.providers.base import CoreMessage
from chatgate.providers.registry import PDF
from chatgate.storage.attachments import AttachmentStore
from chatgate.utils.files import (
    GENERATIONS_PREFIX,
    PDF_MIME_TYPE,
    filename_from_key,
    get_file_type_info,
    is_image_mime_type,
)

log = logging.getLogger("app.history")


def failed_fetch_marker(kind: str, filename: str) -> Dict[str, Any]:
    return {
        "type": "text",
        "text": (
            f"<internal-system-error>Failed to fetch {kind} file {filename}. "
            "Maybe there was an issue or the file was deleted.</internal-system-error>"
        ),
    }


PDF_UNSUPPORTED_MARKER = (
    "<internal-system-error>PDF files are not supported by this model. "
    "Please try again with a different model.</internal-system-error>"
)


async def _fetch(store: AttachmentStore, ref: str) -> bytes:
    url = await store.get_url(ref)
    return await store.fetch(url)


async def _map_user_file(part: Dict[str, Any], abilities: Sequence[str], store: AttachmentStore) -> Dict[str, Any]:
    ref = part.get("data") or ""
    mime_type = part.get("mimeType") or ""
    filename = part.get("filename") or filename_from_key(ref)
    info = get_file_type_info(filename, mime_type)

    if info.is_image and is_image_mime_type(mime_type):
        kind = "image"
    elif info.is_text and not info.is_image:
        kind = "text"
    elif info.is_pdf and PDF in abilities:
        kind = "pdf"
    elif info.is_pdf:
        return {"type": "text", "text": PDF_UNSUPPORTED_MARKER}
    else:
        return {
            "type": "text",
            "text": f"<internal-system-error>Unsupported file type: {filename} ({mime_type})</internal-system-error>",
        }

    try:
        raw = await _fetch(store, ref)
    except Exception as e:  # noqa: BLE001
        log.warning({"event": "history.fetch_failed", "kind": kind, "ref": ref, "error": str(e)})
        return failed_fetch_marker(kind, filename)

    if kind == "image":
        return {"type": "image", "image": raw, "mime_type": mime_type}
    if kind == "text":
        text = raw.decode("utf-8", errors="replace")
        return {"type": "text", "text": f'<file name="{filename}">\n{text}\n</file>'}
    return {"type": "file", "mime_type": PDF_MIME_TYPE, "filename": filename, "data": raw}


async def _map_assistant_file(part: Dict[str, Any], store: AttachmentStore) -> Optional[Dict[str, Any]]:
    ref = part.get("data") or ""
    mime_type = part.get("mimeType") or ""
    if mime_type.startswith("image/") and ref.startswith(GENERATIONS_PREFIX):
        try:
            raw = await _fetch(store, ref)
        except Exception as e:  # noqa: BLE001
            log.warning({"event": "history.fetch_failed", "kind": "generation", "ref": ref, "error": str(e)})
            return None
        return {"type": "file", "mime_type": mime_type or "image/png", "filename": part.get("filename") or "", "data": raw}
    return {
        "type": "file",
        "mime_type": mime_type or "application/octet-stream",
        "filename": part.get("filename") or "",
        "data": ref,
    }


async def db_messages_to_core(
    messages: Sequence[Any],
    abilities: Sequence[str],
    store: AttachmentStore,
) -> List[CoreMessage]:
    """Map persisted messages (oldest first) to backend messages (oldest first).

    Walks newest-first so adjacent same-role turns can be merged, then reverses.
    Attachment failures become inline markers; the input is never mutated.
    """
    out: List[CoreMessage] = []  # newest first until the final reverse
    for message in reversed(list(messages)):
        parts: List[Dict[str, Any]] = list(message.parts or [])
        if message.role == "user":
            content: List[Dict[str, Any]] = []
            for p in parts:
                if p.get("type") == "text":
                    content.append({"type": "text", "text": p.get("text", "")})
                elif p.get("type") == "file":
                    content.append(await _map_user_file(p, abilities, store))
            if not content:
                continue
            newer = out[-1] if out else None
            if newer is not None and newer.role == "user" and isinstance(newer.content, list):
                # this message is older, so its content goes first
                newer.content = content + newer.content
            else:
                out.append(CoreMessage(role="user", content=content, message_id=message.message_id))

        elif message.role == "assistant":
            content = []
            calls: List[Dict[str, Any]] = []
            results: List[Dict[str, Any]] = []
            for p in parts:
                ptype = p.get("type")
                if ptype == "text":
                    content.append({"type": "text", "text": p.get("text", "")})
                elif ptype == "reasoning":
                    content.append({"type": "reasoning", "text": p.get("reasoning", "")})
                elif ptype == "file":
                    mapped = await _map_assistant_file(p, store)
                    if mapped is not None:
                        content.append(mapped)
                elif ptype == "tool-invocation":
                    inv = p.get("toolInvocation") or {}
                    if inv.get("state") != "result":
                        continue
                    calls.append({
                        "type": "tool-call",
                        "tool_call_id": inv.get("toolCallId"),
                        "tool_name": inv.get("toolName"),
                        "args": inv.get("args") or {},
                    })
                    results.append({
                        "type": "tool-result",
                        "tool_call_id": inv.get("toolCallId"),
                        "tool_name": inv.get("toolName"),
                        "result": inv.get("result"),
                    })
            if not content and not calls:
                continue

            newer = out[-1] if out else None
            mergeable = (
                newer is not None
                and newer.role == "assistant"
                and not calls
                and not newer.message_id.endswith("-tool-call")
                and isinstance(newer.content, list)
            )
            if mergeable and content:
                newer.content = content + newer.content
                continue
            if content:
                out.append(CoreMessage(role="assistant", content=content, message_id=message.message_id))
            if calls:
                out.append(CoreMessage(role="tool", content=results, message_id=f"{message.message_id}-tool-result"))
                out.append(CoreMessage(role="assistant", content=calls, message_id=f"{message.message_id}-tool-call"))

    out.reverse()
    return out
