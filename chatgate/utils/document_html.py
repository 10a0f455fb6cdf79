# chatgate/utils/document_html.py
from __future__ import annotations

import html
import json
import re
from typing import Any, Dict, Optional

_BLOCK_TAGS: Dict[str, str] = {
    "paragraph": "p",
    "bulletList": "ul",
    "orderedList": "ol",
    "listItem": "li",
    "blockquote": "blockquote",
    "table": "table",
    "tableRow": "tr",
    "tableCell": "td",
    "tableHeader": "th",
    "taskList": "ul",
    "taskItem": "li",
}
_MARK_TAGS: Dict[str, str] = {
    "bold": "strong",
    "italic": "em",
    "code": "code",
    "strike": "s",
    "underline": "u",
    "subscript": "sub",
    "superscript": "sup",
    "highlight": "mark",
}

_BASE64_RE = re.compile(r"data:[^;]+;base64,[A-Za-z0-9+/=]+")
_BLOB_RE = re.compile(r"blob:[^\"'\s)]+")


def parse_editor_content(content: Any) -> Optional[Dict[str, Any]]:
    """Editor JSON as a dict; ``None`` for empty, malformed or non-object content."""
    if not content or isinstance(content, (bool, int, float)):
        return None
    if isinstance(content, dict):
        return content
    if isinstance(content, str):
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _attr(value: Any) -> str:
    return html.escape(str(value), quote=True)


def _render_text(node: Dict[str, Any]) -> str:
    out = html.escape(node.get("text") or "", quote=False)
    for mark in node.get("marks") or []:
        mtype = mark.get("type")
        if mtype == "link":
            href = (mark.get("attrs") or {}).get("href") or ""
            out = f'<a href="{_attr(href)}">{out}</a>'
        elif mtype in _MARK_TAGS:
            tag = _MARK_TAGS[mtype]
            out = f"<{tag}>{out}</{tag}>"
    return out


def _render(node: Dict[str, Any]) -> str:
    ntype = node.get("type")
    attrs = node.get("attrs") or {}
    inner = "".join(_render(c) for c in node.get("content") or [] if isinstance(c, dict))

    if ntype == "text":
        return _render_text(node)
    if ntype == "doc":
        return inner
    if ntype == "heading":
        level = min(max(int(attrs.get("level") or 1), 1), 6)
        return f"<h{level}>{inner}</h{level}>"
    if ntype == "codeBlock":
        lang = attrs.get("language")
        cls = f' class="language-{_attr(lang)}"' if lang else ""
        return f"<pre><code{cls}>{inner}</code></pre>"
    if ntype == "hardBreak":
        return "<br>"
    if ntype == "horizontalRule":
        return "<hr>"
    if ntype == "image":
        return f'<img src="{_attr(attrs.get("src") or "")}" alt="{_attr(attrs.get("alt") or "")}">'
    tag = _BLOCK_TAGS.get(ntype or "")
    if tag:
        return f"<{tag}>{inner}</{tag}>"
    return inner


def get_document_html(content: Any) -> Optional[str]:
    """Render editor JSON to HTML with inline binary payloads replaced by placeholders."""
    doc = parse_editor_content(content)
    if doc is None:
        return None
    rendered = _render(doc)
    rendered = _BASE64_RE.sub("[base64 omitted]", rendered)
    return _BLOB_RE.sub("[blob omitted]", rendered)
