# chatgate/orchestration/tools/web_search.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from chatgate.core.settings import get_settings
from chatgate.orchestration.toolkit import WEB_SEARCH, Tool, ToolRequestContext, model_tool

log = logging.getLogger("app.tools.search")

SEARCH_PROVIDERS = ("tavily", "brave", "serper", "firecrawl")


class WebSearchArgs(BaseModel):
    query: str = Field(..., description="The search query")
    max_results: int = Field(default=5, ge=1, le=20, description="How many results to return")


def _server_key(provider: str) -> Optional[str]:
    s = get_settings()
    return {
        "tavily": s.tavily_api_key,
        "brave": s.brave_api_key,
        "serper": s.serper_api_key,
        "firecrawl": s.firecrawl_api_key,
    }.get(provider)


async def search(provider: str, key: str, query: str, limit: int, timeout: float) -> List[Dict[str, Any]]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        if provider == "tavily":
            resp = await client.post(
                "https://api.tavily.com/search",
                json={"query": query, "max_results": limit},
                headers={"Authorization": f"Bearer {key}"},
            )
            resp.raise_for_status()
            rows = resp.json().get("results") or []
            return [{"title": r.get("title"), "url": r.get("url"), "snippet": r.get("content")} for r in rows]
        if provider == "brave":
            resp = await client.get(
                "https://api.search.brave.com/res/v1/web/search",
                params={"q": query, "count": limit},
                headers={"X-Subscription-Token": key, "Accept": "application/json"},
            )
            resp.raise_for_status()
            rows = (resp.json().get("web") or {}).get("results") or []
            return [{"title": r.get("title"), "url": r.get("url"), "snippet": r.get("description")} for r in rows]
        if provider == "serper":
            resp = await client.post(
                "https://google.serper.dev/search",
                json={"q": query, "num": limit},
                headers={"X-API-KEY": key},
            )
            resp.raise_for_status()
            rows = resp.json().get("organic") or []
            return [{"title": r.get("title"), "url": r.get("link"), "snippet": r.get("snippet")} for r in rows]
        if provider == "firecrawl":
            resp = await client.post(
                "https://api.firecrawl.dev/v1/search",
                json={"query": query, "limit": limit},
                headers={"Authorization": f"Bearer {key}"},
            )
            resp.raise_for_status()
            rows = resp.json().get("data") or []
            return [{"title": r.get("title"), "url": r.get("url"), "snippet": r.get("description")} for r in rows]
    raise ValueError(f"unknown search provider: {provider}")


async def web_search_adapter(enabled: List[str], ctx: ToolRequestContext) -> Dict[str, Tool]:
    if WEB_SEARCH not in enabled:
        return {}
    provider = ctx.search_provider if ctx.search_provider in SEARCH_PROVIDERS else "tavily"
    key = ctx.provider_key(provider) or _server_key(provider)
    if not key:
        log.warning({"event": "tools.web_search.no_key", "provider": provider, "user_id": ctx.user_id})
        return {}
    settings = get_settings()

    async def _run(args: WebSearchArgs) -> Dict[str, Any]:
        limit = min(args.max_results, settings.search_max_results)
        results = await search(provider, key, args.query, limit, settings.tool_timeout_sec)
        return {"query": args.query, "provider": provider, "results": results}

    return {
        "web_search": model_tool(
            "web_search",
            "Search the web for up-to-date information. Returns titles, URLs and snippets.",
            WebSearchArgs,
            _run,
        )
    }
