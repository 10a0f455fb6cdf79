# tests/test_toolkit.py
from __future__ import annotations

import json
from contextlib import asynccontextmanager

import respx
from httpx import Response

from chatgate.orchestration.toolkit import (
    DOCUMENT_CONTEXT,
    MCP,
    WEB_SEARCH,
    Tool,
    ToolRequestContext,
    effective_tool_ids,
    enabled_mcp_servers,
    get_toolkit,
)
from chatgate.orchestration.tools import mcp_servers
from chatgate.orchestration.tools.document_context import GET_CURRENT_DOCUMENT, read_current_document
from chatgate.orchestration.tools.mcp_servers import tool_name
from chatgate.orchestration.tools.web_search import web_search_adapter
from chatgate.storage.database import session_scope
from chatgate.storage.models import Document


def _tool(name: str, marker: str) -> Tool:
    async def _run(args):
        return marker

    return Tool(name=name, description=marker, parameters={"type": "object"}, execute=_run)


async def test_later_adapter_wins_on_name_clash() -> None:
    async def first(enabled, ctx):
        return {"search": _tool("search", "first"), "only_first": _tool("only_first", "first")}

    async def second(enabled, ctx):
        return {"search": _tool("search", "second")}

    tools = await get_toolkit([], ToolRequestContext(user_id="u"), adapters=[first, second])
    assert sorted(tools) == ["only_first", "search"]
    assert await tools["search"].execute({}) == "second"


async def test_failing_adapter_contributes_nothing() -> None:
    async def broken(enabled, ctx):
        raise ImportError("cannot import name 'streamablehttp_client'")

    async def working(enabled, ctx):
        return {"search": _tool("search", "ok")}

    tools = await get_toolkit([MCP], ToolRequestContext(user_id="u"), adapters=[broken, working])
    assert sorted(tools) == ["search"]


async def test_unreachable_mcp_server_is_skipped(monkeypatch) -> None:
    @asynccontextmanager
    async def no_session(server):
        raise ImportError("mcp client unavailable")
        yield

    monkeypatch.setattr(mcp_servers, "open_session", no_session)
    ctx = ToolRequestContext(user_id="u", mcp_servers=[{"name": "gh", "url": "http://gh/mcp"}])
    assert await mcp_servers.mcp_adapter([MCP], ctx) == {}


def test_mcp_override_beats_server_flag() -> None:
    servers = [
        {"name": "a", "url": "http://a/mcp", "enabled": True},
        {"name": "b", "url": "http://b/mcp", "enabled": False},
        {"name": "c", "enabled": True},
    ]
    assert [s["name"] for s in enabled_mcp_servers(servers, {})] == ["a"]
    assert [s["name"] for s in enabled_mcp_servers(servers, {"a": False, "b": True})] == ["b"]


def test_mcp_is_added_when_a_server_is_active() -> None:
    ctx = ToolRequestContext(user_id="u", mcp_servers=[{"name": "a", "url": "http://a/mcp"}])
    assert effective_tool_ids([WEB_SEARCH, "bogus"], ctx) == [WEB_SEARCH, MCP]
    assert effective_tool_ids([WEB_SEARCH], ToolRequestContext(user_id="u")) == [WEB_SEARCH]


def test_mcp_tool_names_are_sanitized() -> None:
    assert tool_name("my server", "get.issue") == "my_server_get_issue"
    assert len(tool_name("s" * 40, "t" * 40)) == 64


async def test_web_search_needs_a_key(monkeypatch) -> None:
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    assert await web_search_adapter([WEB_SEARCH], ToolRequestContext(user_id="u")) == {}


@respx.mock
async def test_web_search_with_user_key() -> None:
    route = respx.post("https://api.tavily.com/search").mock(return_value=Response(200, json={
        "results": [{"title": "T", "url": "https://x.test", "content": "snippet"}],
    }))
    ctx = ToolRequestContext(user_id="u", general_providers={"tavily": {"key": "tvly-user"}})
    tools = await web_search_adapter([WEB_SEARCH], ctx)

    out = await tools["web_search"].execute({"query": "news", "max_results": 3})
    assert out["results"] == [{"title": "T", "url": "https://x.test", "snippet": "snippet"}]
    assert route.calls.last.request.headers["Authorization"] == "Bearer tvly-user"
    assert json.loads(route.calls.last.request.content)["max_results"] == 3


def _doc(**kw) -> Document:
    content = {"type": "doc", "content": [
        {"type": "heading", "attrs": {"level": 1}, "content": [{"type": "text", "text": "Plan"}]},
        {"type": "paragraph", "content": [{"type": "text", "text": "Ship it", "marks": [{"type": "bold"}]}]},
    ]}
    fields = dict(id="d1", user_id="u", title="Plan", content=json.dumps(content), is_public=False, is_locked=False)
    fields.update(kw)
    doc = Document(**fields)
    with session_scope() as s:
        s.merge(doc)
    return doc


async def test_current_document_for_owner() -> None:
    _doc()
    out = await read_current_document(ToolRequestContext(user_id="u", current_document_id="d1"))
    assert out["success"] is True
    assert out["html"] == "<h1>Plan</h1><p><strong>Ship it</strong></p>"
    assert out["metadata"]["title"] == "Plan"


async def test_current_document_failures_have_uniform_shape() -> None:
    _doc()
    _doc(id="d2", content="")
    for ctx in (
        ToolRequestContext(user_id="intruder", current_document_id="d1"),
        ToolRequestContext(user_id="u", current_document_id="missing"),
        ToolRequestContext(user_id="u", current_document_id="d2"),
        ToolRequestContext(user_id="u"),
    ):
        out = await read_current_document(ctx)
        assert out["success"] is False
        assert out["html"] is None and out["metadata"] is None
        assert out["error"]


async def test_public_document_is_readable_by_others() -> None:
    _doc(is_public=True)
    out = await read_current_document(ToolRequestContext(user_id="someone", current_document_id="d1"))
    assert out["success"] is True


async def test_document_tool_registered_only_when_enabled() -> None:
    from chatgate.orchestration.tools.document_context import document_context_adapter

    ctx = ToolRequestContext(user_id="u", current_document_id="d1")
    assert await document_context_adapter([], ctx) == {}
    assert GET_CURRENT_DOCUMENT in await document_context_adapter([DOCUMENT_CONTEXT], ctx)


@respx.mock
async def test_memories_are_scoped_to_the_user() -> None:
    from chatgate.orchestration.tools.memory import supermemory_adapter

    search = respx.post("https://api.supermemory.ai/v3/search").mock(return_value=Response(200, json={
        "results": [{"documentId": "m1", "title": "Coffee", "chunks": [{"content": "likes espresso"}]}],
    }))
    add = respx.post("https://api.supermemory.ai/v3/memories").mock(
        return_value=Response(200, json={"id": "m2", "status": "queued"})
    )
    ctx = ToolRequestContext(user_id="u", general_providers={"supermemory": {"key": "sm-key"}})
    tools = await get_toolkit(["supermemory"], ctx, adapters=[supermemory_adapter])

    found = await tools["search_memories"].execute({"query": "coffee"})
    assert found["memories"] == [{"id": "m1", "title": "Coffee", "content": "likes espresso"}]
    assert json.loads(search.calls.last.request.content)["containerTags"] == ["u"]

    added = await tools["add_memory"].execute({"content": "drinks tea too"})
    assert added == {"success": True, "id": "m2", "status": "queued"}
    assert json.loads(add.calls.last.request.content)["containerTags"] == ["u"]
