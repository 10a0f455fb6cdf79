# chatgate/orchestration/prompt.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from chatgate.orchestration.toolkit import DOCUMENT_CONTEXT, MCP, SUPERMEMORY, WEB_SEARCH

_TOOL_HINTS = {
    WEB_SEARCH: "Use web_search for recent events or facts you are unsure about, and cite the URLs you used.",
    SUPERMEMORY: (
        "Use search_memories to recall what you know about the user, and add_memory when they share "
        "something worth remembering."
    ),
    MCP: "External tools from the user's MCP servers are available; prefer them for the services they cover.",
    DOCUMENT_CONTEXT: "Call get_current_document when the user refers to the document they are editing.",
}


def build_system_prompt(
    enabled_tools: Iterable[str],
    customization: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    c = customization or {}
    lines = [
        "You are a helpful assistant inside a writing and research workspace.",
        f"The current date is {now.strftime('%A, %B %d, %Y')}.",
        "Format answers in Markdown. Keep them concise unless the user asks for detail.",
    ]
    if c.get("name"):
        lines.append(f"The user's name is {c['name']}.")
    if c.get("aiPersonality"):
        lines.append(f"Personality: {c['aiPersonality']}")
    if c.get("additionalContext"):
        lines.append(f"About the user: {c['additionalContext']}")
    hints = [_TOOL_HINTS[t] for t in dict.fromkeys(enabled_tools) if t in _TOOL_HINTS]
    if hints:
        lines.append("")
        lines.append("Tools:")
        lines.extend(f"- {h}" for h in hints)
    return "\n".join(lines)
