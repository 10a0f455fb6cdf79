# tests/test_storage.py
from __future__ import annotations

import uuid
from typing import Optional

import pytest
from sqlalchemy import select

from chatgate.storage import repo
from chatgate.storage.database import session_scope
from chatgate.storage.models import Message, Stream, Thread


def _thread(owner_id: str, title: Optional[str] = None) -> Thread:
    th = Thread(id=uuid.uuid4().hex, owner_id=owner_id, title=title, is_live=False)
    with session_scope() as s:
        s.add(th)
    return th


def _add_messages(thread_id: str, *roles: str) -> None:
    with session_scope() as s:
        for i, role in enumerate(roles):
            s.add(Message(message_id=f"m{i}", thread_id=thread_id, role=role, parts=[], meta={}))


def test_thread_create_and_cascade() -> None:
    th = _thread("user-1", "Title")
    assert th.id
    _add_messages(th.id, "user", "assistant")
    repo.append_stream_id(th.id)

    with session_scope() as s:
        assert len(s.scalars(select(Message).where(Message.thread_id == th.id)).all()) == 2

    with session_scope() as s:
        s.delete(s.get(Thread, th.id))

    with session_scope() as s:
        assert s.scalars(select(Message).where(Message.thread_id == th.id)).all() == []
        assert s.scalars(select(Stream).where(Stream.thread_id == th.id)).all() == []


def test_patch_message_merges_metadata() -> None:
    th = _thread("user-1")
    _add_messages(th.id, "assistant")
    repo.patch_message(th.id, "m0", parts=[{"type": "text", "text": "a"}], metadata={"modelId": "x"})
    repo.patch_message(th.id, "m0", parts=[{"type": "text", "text": "b"}], metadata={"charged": True})

    msg = repo.get_message(th.id, "m0")
    assert msg.parts == [{"type": "text", "text": "b"}]
    assert msg.meta == {"modelId": "x", "charged": True}


def test_patch_message_missing_raises() -> None:
    th = _thread("user-1")
    with pytest.raises(LookupError):
        repo.patch_message(th.id, "nope", parts=[])


def test_delete_messages_after_inclusive() -> None:
    th = _thread("user-1")
    _add_messages(th.id, "user", "assistant", "user", "assistant")
    rows = repo.get_messages_by_thread_id(th.id)

    with session_scope() as s:
        assert repo.delete_messages_after(s, th.id, rows[1].seq, inclusive=True) == 3
    assert [m.message_id for m in repo.get_messages_by_thread_id(th.id)] == ["m0"]


def test_streaming_state_keeps_unset_columns() -> None:
    th = _thread("user-1")
    repo.update_streaming_state(th.id, is_live=True, stream_started_at=123, current_stream_id="s1")
    repo.update_streaming_state(th.id, is_live=False, current_stream_id=None)

    t = repo.get_thread(th.id)
    assert t.is_live is False
    assert t.current_stream_id is None
    assert t.stream_started_at == 123


def test_streams_are_ordered() -> None:
    th = _thread("user-1")
    first = repo.append_stream_id(th.id)
    second = repo.append_stream_id(th.id)
    ids = [s.id for s in repo.get_streams_by_thread_id(th.id)]
    assert set(ids) == {first, second}


def test_usage_stats_split_charged() -> None:
    repo.record_usage_event(user_id="u", model_id="gpt-4o-mini", prompt_tokens=10, completion_tokens=5,
                            reasoning_tokens=0, charged=True)
    repo.record_usage_event(user_id="u", model_id="gpt-4o-mini", prompt_tokens=1, completion_tokens=1,
                            reasoning_tokens=1, charged=False)
    repo.record_usage_event(user_id="other", model_id="gpt-4o-mini", prompt_tokens=99, completion_tokens=0,
                            reasoning_tokens=0, charged=True)

    stats = repo.usage_stats("u", "7d")
    assert stats["totalRequests"] == 2
    assert stats["totalTokens"] == 18
    assert stats["chargedRequests"] == 1
    assert stats["chargedTokens"] == 15
    assert stats["modelStats"][0]["modelId"] == "gpt-4o-mini"
    assert repo.count_requests("u", 1) == 1
    assert repo.count_requests("u", 1, charged_only=False) == 2


def test_user_settings_defaults_and_save() -> None:
    row = repo.get_user_settings("u")
    assert row.plan == "free"
    assert row.core_providers == {}

    saved = repo.save_user_settings("u", {"plan": "pro", "search_provider": "brave", "unknown": 1})
    assert saved.plan == "pro"
    assert repo.get_user_settings("u").search_provider == "brave"
