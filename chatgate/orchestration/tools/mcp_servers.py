# chatgate/orchestration/tools/mcp_servers.py
from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List

from chatgate.core.settings import get_settings
from chatgate.orchestration.toolkit import MCP, Tool, ToolRequestContext, enabled_mcp_servers

if TYPE_CHECKING:
    from mcp import ClientSession

log = logging.getLogger("app.tools.mcp")

_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]+")


def tool_name(server: str, tool: str) -> str:
    return _NAME_RE.sub("_", f"{server}_{tool}")[:64]


@asynccontextmanager
async def open_session(server: Dict[str, Any]) -> AsyncIterator[ClientSession]:
    # imported here: an SDK import error fails only this server's listing
    from mcp import ClientSession
    from mcp.client.streamable_http import streamablehttp_client

    timeout = get_settings().tool_timeout_sec
    async with streamablehttp_client(
        server["url"], headers=server.get("headers") or None, timeout=timedelta(seconds=timeout)
    ) as (read, write, _):
        async with ClientSession(read, write) as session:
            await session.initialize()
            yield session


def _result_payload(result: Any) -> Any:
    texts = [getattr(c, "text", None) for c in result.content or []]
    text = "\n".join(t for t in texts if t)
    if result.isError:
        return {"error": text or "MCP tool call failed"}
    structured = getattr(result, "structuredContent", None)
    return structured if structured else {"content": text}


def _remote_tool(server: Dict[str, Any], remote: Any) -> Tool:
    async def _execute(args: Dict[str, Any]) -> Any:
        async with open_session(server) as session:
            result = await session.call_tool(remote.name, args or {})
        return _result_payload(result)

    return Tool(
        name=tool_name(server["name"], remote.name),
        description=remote.description or f"{remote.name} ({server['name']})",
        parameters=remote.inputSchema or {"type": "object", "properties": {}},
        execute=_execute,
    )


async def _list_server_tools(server: Dict[str, Any]) -> Dict[str, Tool]:
    try:
        async with open_session(server) as session:
            listed = await session.list_tools()
    except Exception as e:  # noqa: BLE001 - a broken server contributes no tools
        log.warning({"event": "tools.mcp.list_failed", "server": server.get("name"), "error": str(e)})
        return {}
    tools = [_remote_tool(server, t) for t in listed.tools]
    return {t.name: t for t in tools}


async def mcp_adapter(enabled: List[str], ctx: ToolRequestContext) -> Dict[str, Tool]:
    if MCP not in enabled:
        return {}
    servers = enabled_mcp_servers(ctx.mcp_servers, ctx.mcp_overrides)
    batches = await asyncio.gather(*(_list_server_tools(s) for s in servers))
    tools: Dict[str, Tool] = {}
    for batch in batches:
        tools.update(batch)
    return tools
