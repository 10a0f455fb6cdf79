# chatgate/orchestration/tools/memory.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx
from pydantic import BaseModel, Field

from chatgate.core.settings import get_settings
from chatgate.orchestration.toolkit import SUPERMEMORY, Tool, ToolRequestContext, model_tool

log = logging.getLogger("app.tools.memory")


class SearchMemoriesArgs(BaseModel):
    query: str = Field(..., description="What to look for in the user's long-term memory")
    limit: int = Field(default=5, ge=1, le=20)


class AddMemoryArgs(BaseModel):
    content: str = Field(..., description="A fact about the user worth remembering")


class SupermemoryClient:
    def __init__(self, base_url: str, api_key: str, timeout: float) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.base_url}{path}", json=payload, headers={"Authorization": f"Bearer {self.api_key}"}
            )
            resp.raise_for_status()
            return resp.json()

    async def search(self, user_id: str, query: str, limit: int) -> List[Dict[str, Any]]:
        data = await self._post("/v3/search", {"q": query, "limit": limit, "containerTags": [user_id]})
        out = []
        for r in data.get("results") or []:
            chunks = [c.get("content") for c in r.get("chunks") or [] if c.get("content")]
            out.append({"id": r.get("documentId") or r.get("id"), "title": r.get("title"), "content": "\n".join(chunks)})
        return out

    async def add(self, user_id: str, content: str) -> Dict[str, Any]:
        data = await self._post("/v3/memories", {"content": content, "containerTags": [user_id]})
        return {"id": data.get("id"), "status": data.get("status", "queued")}


async def supermemory_adapter(enabled: List[str], ctx: ToolRequestContext) -> Dict[str, Tool]:
    if SUPERMEMORY not in enabled:
        return {}
    settings = get_settings()
    key = ctx.provider_key("supermemory") or settings.supermemory_api_key
    if not key:
        log.warning({"event": "tools.supermemory.no_key", "user_id": ctx.user_id})
        return {}
    client = SupermemoryClient(settings.supermemory_base_url, key, settings.tool_timeout_sec)

    async def _search(args: SearchMemoriesArgs) -> Dict[str, Any]:
        return {"memories": await client.search(ctx.user_id, args.query, args.limit)}

    async def _add(args: AddMemoryArgs) -> Dict[str, Any]:
        return {"success": True, **(await client.add(ctx.user_id, args.content))}

    return {
        "search_memories": model_tool(
            "search_memories", "Search the user's long-term memories.", SearchMemoriesArgs, _search
        ),
        "add_memory": model_tool(
            "add_memory", "Store a new long-term memory about the user.", AddMemoryArgs, _add
        ),
    }
