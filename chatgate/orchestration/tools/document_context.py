# chatgate/orchestration/tools/document_context.py
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel

from chatgate.orchestration.toolkit import DOCUMENT_CONTEXT, Tool, ToolRequestContext, model_tool
from chatgate.storage import repo
from chatgate.utils.document_html import get_document_html

GET_CURRENT_DOCUMENT = "get_current_document"


class NoArgs(BaseModel):
    pass


def _failure(reason: str) -> Dict[str, Any]:
    return {"success": False, "error": reason, "html": None, "metadata": None}


async def read_current_document(ctx: ToolRequestContext) -> Dict[str, Any]:
    doc = repo.get_document(ctx.current_document_id) if ctx.current_document_id else None
    if doc is None or (doc.user_id != ctx.user_id and not doc.is_public):
        return _failure("Document not found or access denied.")
    if not doc.content:
        return _failure("Document content is empty.")
    html = get_document_html(doc.content)
    if not html:
        return _failure("Document content is empty.")
    return {
        "success": True,
        "html": html,
        "metadata": {
            "id": doc.id,
            "title": doc.title,
            "documentType": doc.document_type,
            "description": doc.description,
            "updatedAt": doc.updated_at.isoformat() if doc.updated_at else None,
            "isLocked": bool(doc.is_locked),
            "isPublic": bool(doc.is_public),
        },
    }


async def document_context_adapter(enabled: List[str], ctx: ToolRequestContext) -> Dict[str, Tool]:
    if DOCUMENT_CONTEXT not in enabled:
        return {}

    async def _run(_: NoArgs) -> Dict[str, Any]:
        return await read_current_document(ctx)

    return {
        GET_CURRENT_DOCUMENT: model_tool(
            GET_CURRENT_DOCUMENT,
            "Get the current document's content as HTML and its metadata.",
            NoArgs,
            _run,
        )
    }
