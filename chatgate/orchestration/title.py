# chatgate/orchestration/title.py
from __future__ import annotations

import logging
from typing import List, Optional

from chatgate.core.settings import get_settings
from chatgate.providers.base import CoreMessage
from chatgate.providers.registry import ModelRegistry
from chatgate.providers.resolver import ResolvedModel, resolve_model
from chatgate.storage import repo

log = logging.getLogger("app.title")

TITLE_PROMPT = (
    "Generate a short title for a conversation that starts with the user's message below. "
    "Reply with the title only: no quotes, no trailing punctuation, at most {max_chars} characters."
)


def _first_user_text(messages: List[CoreMessage]) -> str:
    for m in messages:
        if m.role == "user":
            if isinstance(m.content, str):
                return m.content
            return " ".join(c["text"] for c in m.content if c.get("type") == "text")
    return ""


def clean_title(raw: str, max_chars: int) -> str:
    title = " ".join((raw or "").split()).strip().strip("\"'").rstrip(".")
    if len(title) > max_chars:
        title = title[: max_chars - 1].rstrip() + "…"
    return title


async def generate_thread_title(
    thread_id: str,
    messages: List[CoreMessage],
    registry: ModelRegistry,
    title_model: Optional[str] = None,
) -> Optional[str]:
    settings = get_settings()
    text = _first_user_text(messages).strip()
    if not text:
        return None
    resolved = resolve_model(registry, title_model or settings.default_title_model, settings=settings)
    if not isinstance(resolved, ResolvedModel) or resolved.modality != "text":
        log.info({"event": "title.skipped", "thread_id": thread_id, "reason": "no_title_model"})
        return None
    raw, _ = await resolved.backend.generate(
        messages=[
            CoreMessage(role="system", content=TITLE_PROMPT.format(max_chars=settings.title_max_chars)),
            CoreMessage(role="user", content=text[:2000]),
        ],
        max_tokens=32,
    )
    title = clean_title(raw, settings.title_max_chars)
    if title:
        repo.update_thread_title(thread_id, title)
        log.info({"event": "title.updated", "thread_id": thread_id, "title": title})
    return title or None
