# chatgate/orchestration/toolkit.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

log = logging.getLogger("app.tools")

WEB_SEARCH = "web_search"
SUPERMEMORY = "supermemory"
MCP = "mcp"
DOCUMENT_CONTEXT = "document_context"
ABILITIES = (WEB_SEARCH, SUPERMEMORY, MCP, DOCUMENT_CONTEXT)


@dataclass
class Tool:
    name: str
    description: str
    parameters: Dict[str, Any]
    execute: Callable[[Dict[str, Any]], Awaitable[Any]]

    def spec(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


def model_tool(
    name: str,
    description: str,
    args_model: Type[BaseModel],
    fn: Callable[[BaseModel], Awaitable[Any]],
) -> Tool:
    """Tool whose arguments are validated by a pydantic model before ``fn`` runs."""

    async def _execute(args: Dict[str, Any]) -> Any:
        return await fn(args_model.model_validate(args or {}))

    return Tool(name=name, description=description, parameters=args_model.model_json_schema(), execute=_execute)


@dataclass
class ToolRequestContext:
    user_id: str
    search_provider: str = "tavily"
    general_providers: Dict[str, Any] = field(default_factory=dict)
    mcp_servers: List[Dict[str, Any]] = field(default_factory=list)
    mcp_overrides: Dict[str, bool] = field(default_factory=dict)
    current_document_id: Optional[str] = None
    workspace_id: Optional[str] = None

    def provider_key(self, provider: str) -> Optional[str]:
        cfg = self.general_providers.get(provider) or {}
        if not isinstance(cfg, dict) or cfg.get("enabled") is False:
            return None
        return cfg.get("key") or None


ToolAdapter = Callable[[List[str], ToolRequestContext], Awaitable[Dict[str, Tool]]]


def enabled_mcp_servers(servers: List[Dict[str, Any]], overrides: Optional[Dict[str, bool]]) -> List[Dict[str, Any]]:
    """Servers active for this request: an override wins, else the server's own flag."""
    overrides = overrides or {}
    active = []
    for srv in servers or []:
        name = srv.get("name")
        flag = overrides[name] if name in overrides else srv.get("enabled", True)
        if flag and srv.get("url"):
            active.append(srv)
    return active


def effective_tool_ids(enabled: List[str], ctx: ToolRequestContext) -> List[str]:
    ids = [t for t in enabled if t in ABILITIES]
    if MCP not in ids and enabled_mcp_servers(ctx.mcp_servers, ctx.mcp_overrides):
        ids.append(MCP)
    return ids


def tool_adapters() -> List[ToolAdapter]:
    from chatgate.orchestration.tools.document_context import document_context_adapter
    from chatgate.orchestration.tools.mcp_servers import mcp_adapter
    from chatgate.orchestration.tools.memory import supermemory_adapter
    from chatgate.orchestration.tools.web_search import web_search_adapter

    return [web_search_adapter, supermemory_adapter, mcp_adapter, document_context_adapter]


async def get_toolkit(
    enabled: List[str],
    ctx: ToolRequestContext,
    adapters: Optional[List[ToolAdapter]] = None,
) -> Dict[str, Tool]:
    """Merge every adapter's tools; a later adapter overwrites an earlier name.

    An adapter that raises contributes nothing.
    """
    adapters = adapters if adapters is not None else tool_adapters()
    results = await asyncio.gather(*(a(enabled, ctx) for a in adapters), return_exceptions=True)
    tools: Dict[str, Tool] = {}
    for adapter, batch in zip(adapters, results):
        if isinstance(batch, BaseException):
            if not isinstance(batch, Exception):
                raise batch
            log.warning({
                "event": "toolkit.adapter_failed",
                "adapter": getattr(adapter, "__name__", repr(adapter)),
                "error": repr(batch),
            })
            continue
        for name, tool in batch.items():
            if tool is not None:
                tools[name] = tool
    log.info({"event": "toolkit.ready", "user_id": ctx.user_id, "tools": sorted(tools)})
    return tools
