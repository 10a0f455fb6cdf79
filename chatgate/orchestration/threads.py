# chatgate/orchestration/threads.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select

from chatgate.core.errors import ChatError
from chatgate.storage import repo
from chatgate.storage.database import session_scope
from chatgate.storage.models import Message, Thread

log = logging.getLogger("app.threads")

DEFAULT_TITLE = "New Chat"
TARGET_MODES = ("normal", "edit", "retry")


@dataclass
class ThreadAllocation:
    thread_id: str
    assistant_message_id: str
    user_message_id: Optional[str]
    is_new_thread: bool


def create_thread_or_insert_messages(
    *,
    author_id: str,
    proposed_assistant_id: Optional[str],
    user_message: Optional[Dict[str, Any]] = None,
    thread_id: Optional[str] = None,
    target_from_message_id: Optional[str] = None,
    target_mode: str = "normal",
    project_id: Optional[str] = None,
) -> Union[ThreadAllocation, ChatError]:
    """Create or extend a thread and reserve one assistant message in a single transaction."""
    if target_mode not in TARGET_MODES:
        return ChatError("bad_request:chat", f"Unknown target mode: {target_mode}")
    if target_from_message_id and not thread_id:
        return ChatError("bad_request:chat", "targetFromMessageId requires threadId")
    if target_mode in ("edit", "retry") and not target_from_message_id:
        return ChatError("bad_request:chat", f"{target_mode} requires targetFromMessageId")
    if target_mode != "retry" and not user_message:
        return ChatError("bad_request:chat", "message is required")

    assistant_id = proposed_assistant_id or uuid.uuid4().hex
    user_id: Optional[str] = None
    if user_message and target_mode != "retry":
        user_id = user_message.get("id") or uuid.uuid4().hex
    user_parts: List[Dict[str, Any]] = list((user_message or {}).get("parts") or [])

    with session_scope() as s:
        if not thread_id:
            th = Thread(id=uuid.uuid4().hex, owner_id=author_id, title=DEFAULT_TITLE, project_id=project_id)
            s.add(th)
            s.flush()
            s.add(Message(message_id=user_id, thread_id=th.id, role="user", parts=user_parts, meta={}))
            s.add(Message(message_id=assistant_id, thread_id=th.id, role="assistant", parts=[], meta={}))
            log.info({"event": "thread.created", "thread_id": th.id, "user_id": author_id})
            return ThreadAllocation(th.id, assistant_id, user_id, True)

        th = s.get(Thread, thread_id)
        if th is None:
            return ChatError("not_found:chat")
        if th.owner_id != author_id:
            return ChatError("forbidden:chat")

        if target_from_message_id:
            target = s.scalars(
                select(Message).where(Message.thread_id == thread_id, Message.message_id == target_from_message_id)
            ).first()
            if target is None:
                return ChatError("not_found:chat", "Target message not found")

            if target_mode == "edit":
                if target.role != "user":
                    return ChatError("bad_request:chat", "Only user messages can be edited")
                target.parts = user_parts
                repo.delete_messages_after(s, thread_id, target.seq)
                user_id = target.message_id
            elif target_mode == "retry":
                inclusive = target.role == "assistant"
                repo.delete_messages_after(s, thread_id, target.seq, inclusive=inclusive)
            else:
                repo.delete_messages_after(s, thread_id, target.seq)
            s.flush()

        if target_mode == "normal":
            s.add(Message(message_id=user_id, thread_id=thread_id, role="user", parts=user_parts, meta={}))
        s.add(Message(message_id=assistant_id, thread_id=thread_id, role="assistant", parts=[], meta={}))
        log.info({
            "event": "thread.appended",
            "thread_id": thread_id,
            "mode": target_mode,
            "target": target_from_message_id,
        })
        return ThreadAllocation(thread_id, assistant_id, user_id, False)
