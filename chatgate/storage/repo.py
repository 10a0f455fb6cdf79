# chatgate/storage/repo.py
from __future__ import annotations

import time
from datetime import datetime
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select

from chatgate.storage.database import session_scope
from chatgate.storage.models import Document, Message, Stream, Thread, UsageEvent, UserSettings

DAY_MS = 24 * 60 * 60 * 1000
TIMEFRAME_DAYS = {"1d": 1, "7d": 7, "30d": 30}

# marker for "leave the column as it is"
_UNCHANGED: Any = object()


def now_ms() -> int:
    return int(time.time() * 1000)


def days_since_epoch(days_ago: int = 0) -> int:
    return now_ms() // DAY_MS - days_ago


# Threads

def get_thread(thread_id: str) -> Optional[Thread]:
    with session_scope() as s:
        return s.get(Thread, thread_id)


def update_thread_title(thread_id: str, title: str) -> None:
    with session_scope() as s:
        th = s.get(Thread, thread_id)
        if th:
            th.title = title


def update_streaming_state(
    thread_id: str,
    *,
    is_live: bool,
    stream_started_at: Optional[int] = _UNCHANGED,
    current_stream_id: Optional[str] = _UNCHANGED,
) -> None:
    with session_scope() as s:
        th = s.get(Thread, thread_id)
        if not th:
            return
        th.is_live = is_live
        if stream_started_at is not _UNCHANGED:
            th.stream_started_at = stream_started_at
        if current_stream_id is not _UNCHANGED:
            th.current_stream_id = current_stream_id


# Streams

def append_stream_id(thread_id: str) -> str:
    sid = uuid.uuid4().hex
    with session_scope() as s:
        s.add(Stream(id=sid, thread_id=thread_id, created_at=now_ms()))
    return sid


def get_streams_by_thread_id(thread_id: str) -> List[Stream]:
    with session_scope() as s:
        q = select(Stream).where(Stream.thread_id == thread_id).order_by(Stream.created_at.asc())
        return list(s.scalars(q))


# Messages

def get_messages_by_thread_id(thread_id: str) -> List[Message]:
    with session_scope() as s:
        q = select(Message).where(Message.thread_id == thread_id).order_by(Message.seq.asc())
        return list(s.scalars(q))


def get_message(thread_id: str, message_id: str) -> Optional[Message]:
    with session_scope() as s:
        q = select(Message).where(Message.thread_id == thread_id, Message.message_id == message_id)
        return s.scalars(q).first()


def patch_message(
    thread_id: str,
    message_id: str,
    *,
    parts: List[Dict[str, Any]],
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    with session_scope() as s:
        q = select(Message).where(Message.thread_id == thread_id, Message.message_id == message_id)
        msg = s.scalars(q).first()
        if msg is None:
            raise LookupError(f"message {message_id} not found in thread {thread_id}")
        msg.parts = list(parts)
        if metadata is not None:
            msg.meta = {**(msg.meta or {}), **metadata}
        th = s.get(Thread, thread_id)
        if th:
            th.updated_at = datetime.utcnow()


def delete_messages_after(s, thread_id: str, seq: int, *, inclusive: bool = False) -> int:
    cond = Message.seq >= seq if inclusive else Message.seq > seq
    res = s.execute(delete(Message).where(Message.thread_id == thread_id, cond))
    return res.rowcount or 0


# Usage ledger

def record_usage_event(
    *,
    user_id: str,
    model_id: str,
    prompt_tokens: int,
    completion_tokens: int,
    reasoning_tokens: int,
    charged: bool,
) -> UsageEvent:
    ev = UsageEvent(
        user_id=user_id,
        model_id=model_id,
        p=int(prompt_tokens or 0),
        c=int(completion_tokens or 0),
        r=int(reasoning_tokens or 0),
        days_since_epoch=days_since_epoch(),
        charged=bool(charged),
    )
    with session_scope() as s:
        s.add(ev)
    return ev


def get_usage_events(user_id: str, days: int) -> List[UsageEvent]:
    start_day = days_since_epoch(days)
    with session_scope() as s:
        q = select(UsageEvent).where(UsageEvent.user_id == user_id, UsageEvent.days_since_epoch >= start_day)
        return list(s.scalars(q))


def count_requests(user_id: str, days: int = 1, *, charged_only: bool = True) -> int:
    start_day = days_since_epoch(days)
    with session_scope() as s:
        q = select(func.count(UsageEvent.id)).where(
            UsageEvent.user_id == user_id, UsageEvent.days_since_epoch >= start_day
        )
        if charged_only:
            q = q.where(UsageEvent.charged.is_(True))
        return int(s.scalar(q) or 0)


def usage_stats(user_id: str, timeframe: str = "1d") -> Dict[str, Any]:
    events = get_usage_events(user_id, TIMEFRAME_DAYS.get(timeframe, 1))
    per_model: Dict[str, Dict[str, int]] = {}
    for e in events:
        row = per_model.setdefault(e.model_id, {
            "requests": 0, "promptTokens": 0, "completionTokens": 0, "reasoningTokens": 0,
            "totalTokens": 0, "chargedRequests": 0, "chargedTotalTokens": 0,
        })
        total = e.p + e.c + e.r
        row["requests"] += 1
        row["promptTokens"] += e.p
        row["completionTokens"] += e.c
        row["reasoningTokens"] += e.r
        row["totalTokens"] += total
        if e.charged:
            row["chargedRequests"] += 1
            row["chargedTotalTokens"] += total
    charged = [e for e in events if e.charged]
    return {
        "timeframe": timeframe,
        "totalRequests": len(events),
        "totalTokens": sum(e.p + e.c + e.r for e in events),
        "chargedRequests": len(charged),
        "chargedTokens": sum(e.p + e.c + e.r for e in charged),
        "modelStats": [{"modelId": k, **v} for k, v in sorted(per_model.items())],
    }


# User settings (registry source)

_SETTINGS_FIELDS = {
    "plan", "search_provider", "title_generation_model", "customization", "core_providers",
    "custom_providers", "custom_models", "general_providers", "mcp_servers",
}


def get_user_settings(user_id: str) -> UserSettings:
    with session_scope() as s:
        row = s.get(UserSettings, user_id)
        if row is None:
            row = UserSettings(
                user_id=user_id, plan="free", search_provider="tavily", customization={},
                core_providers={}, custom_providers={}, custom_models={}, general_providers={}, mcp_servers=[],
            )
            s.add(row)
        return row


def save_user_settings(user_id: str, data: Dict[str, Any]) -> UserSettings:
    with session_scope() as s:
        row = s.get(UserSettings, user_id)
        if row is None:
            row = UserSettings(user_id=user_id)
            s.add(row)
        for k, v in data.items():
            if k in _SETTINGS_FIELDS and v is not None:
                setattr(row, k, v)
        s.flush()
        return row


# Documents (read-only collaborator)

def get_document(document_id: str) -> Optional[Document]:
    with session_scope() as s:
        return s.get(Document, document_id)
