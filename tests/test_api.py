# tests/test_api.py
from __future__ import annotations

from httpx import AsyncClient, ASGITransport

from apps.api.main import app
from chatgate.orchestration.threads import create_thread_or_insert_messages
from chatgate.storage import repo
from chatgate.storage.database import session_scope
from chatgate.storage.models import Message, Thread, UsageEvent, UserSettings

HEADERS = {"X-User-Id": "user-1"}


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_missing_user_header_is_unauthorized() -> None:
    async with _client() as ac:
        resp = await ac.post("/chat", json={"modelId": "gpt-4o-mini", "message": {"content": "x"}})
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized:chat"


async def test_rate_limited_request_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("FREE_REQUESTS_1D", "0")
    async with _client() as ac:
        resp = await ac.post("/chat", json={"modelId": "gpt-4o-mini", "message": {"content": "x"}}, headers=HEADERS)
    assert resp.status_code == 429
    assert resp.json()["error"] == "RATE_LIMIT"
    with session_scope() as s:
        assert s.query(Message).count() == 0
        assert s.query(UsageEvent).count() == 0


async def test_unknown_model_leaves_no_thread() -> None:
    async with _client() as ac:
        resp = await ac.post("/chat", json={"modelId": "nope", "message": {"content": "x"}}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "bad_model:api"
    with session_scope() as s:
        assert s.query(Thread).count() == 0


async def test_malformed_body_is_bad_request() -> None:
    async with _client() as ac:
        resp = await ac.post("/chat", json={"message": {"content": "x"}}, headers=HEADERS)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "bad_request:api"
    assert "modelId" in body["message"]


async def test_target_without_thread_is_rejected_before_side_effects() -> None:
    async with _client() as ac:
        resp = await ac.post(
            "/chat", json={"modelId": "gpt-4o-mini", "message": {"content": "x"}, "targetFromMessageId": "m1"},
            headers=HEADERS,
        )
    assert resp.status_code == 400
    assert resp.json()["error"] == "bad_request:api"
    assert "requires threadId" in resp.json()["message"]
    with session_scope() as s:
        assert s.query(UserSettings).count() == 0
        assert s.query(Thread).count() == 0

async def test_foreign_thread_is_forbidden() -> None:
    alloc = create_thread_or_insert_messages(
        author_id="owner", proposed_assistant_id=None, user_message={"parts": [{"type": "text", "text": "hi"}]}
    )
    async with _client() as ac:
        post = await ac.post(
            "/chat", json={"modelId": "gpt-4o-mini", "threadId": alloc.thread_id, "message": {"content": "x"}},
            headers=HEADERS,
        )
        get = await ac.get(f"/threads/{alloc.thread_id}/messages", headers=HEADERS)
        mine = await ac.get(f"/threads/{alloc.thread_id}/messages", headers={"X-User-Id": "owner"})
    assert post.status_code == 403
    assert get.status_code == 403
    assert mine.status_code == 200
    assert [m["role"] for m in mine.json()["messages"]] == ["user", "assistant"]


async def test_usage_endpoint() -> None:
    repo.record_usage_event(user_id="user-1", model_id="gpt-4o-mini", prompt_tokens=3, completion_tokens=4,
                            reasoning_tokens=0, charged=True)
    async with _client() as ac:
        ok = await ac.get("/usage?timeframe=7d", headers=HEADERS)
        bad = await ac.get("/usage?timeframe=1y", headers=HEADERS)
    assert ok.json()["totalTokens"] == 7
    assert bad.status_code == 400


async def test_settings_keys_are_masked_and_preserved() -> None:
    key = "sk-user-secret-9876"
    async with _client() as ac:
        put = await ac.put("/settings", headers=HEADERS, json={
            "coreProviders": {"openai": {"key": key, "enabled": True}},
            "mcpServers": [{"name": "gh", "url": "http://gh/mcp", "headers": {"Authorization": "Bearer tok-123456789"}}],
        })
        masked = put.json()
        assert key not in put.text
        # echoing the masked values back must not overwrite the stored secrets
        await ac.put("/settings", headers=HEADERS, json={
            "coreProviders": masked["coreProviders"],
            "mcpServers": masked["mcpServers"],
        })
        got = await ac.get("/settings", headers=HEADERS)

    row = repo.get_user_settings("user-1")
    assert row.core_providers["openai"]["key"] == key
    assert row.mcp_servers[0]["headers"]["Authorization"] == "Bearer tok-123456789"
    assert got.json()["coreProviders"]["openai"]["key"] == "sk-********9876"


async def test_thread_details_list_streams() -> None:
    alloc = create_thread_or_insert_messages(
        author_id="user-1", proposed_assistant_id=None, user_message={"parts": [{"type": "text", "text": "hi"}]}
    )
    sid = repo.append_stream_id(alloc.thread_id)
    async with _client() as ac:
        resp = await ac.get(f"/threads/{alloc.thread_id}", headers=HEADERS)
        missing = await ac.get("/threads/missing", headers=HEADERS)
    data = resp.json()
    assert data["title"] == "New Chat"
    assert data["isLive"] is False
    assert data["streamIds"] == [sid]
    assert missing.status_code == 404
