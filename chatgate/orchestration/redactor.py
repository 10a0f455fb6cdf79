# chatgate/orchestration/redactor.py
from __future__ import annotations

import copy
from typing import Any, Dict, List

# Tools whose results carry a full document body
HTML_RESULT_TOOLS = ("get_current_document", "get_current_document_html", "document_context")


def redact_tool_result(tool_name: str, result: Any) -> Any:
    if tool_name not in HTML_RESULT_TOOLS or not isinstance(result, dict) or "html" not in result:
        return result
    return {k: v for k, v in result.items() if k != "html"}


def redact_parts(parts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Copy of ``parts`` with large tool-result payloads dropped, metadata kept."""
    out: List[Dict[str, Any]] = []
    for part in parts:
        if part.get("type") == "tool-invocation":
            inv = part.get("toolInvocation") or {}
            if inv.get("state") == "result" and "result" in inv:
                part = copy.deepcopy(part)
                part["toolInvocation"]["result"] = redact_tool_result(inv.get("toolName", ""), inv["result"])
        out.append(part)
    return out


def mask_key(key: Any) -> Any:
    if not isinstance(key, str) or not key:
        return key
    return "*" * 8 if len(key) <= 8 else f"{key[:3]}{'*' * 8}{key[-4:]}"


def mask_provider_keys(providers: Dict[str, Any]) -> Dict[str, Any]:
    """Provider config map with every ``key`` masked."""
    out: Dict[str, Any] = {}
    for pid, cfg in (providers or {}).items():
        if isinstance(cfg, dict) and cfg.get("key"):
            cfg = {**cfg, "key": mask_key(cfg["key"])}
        out[pid] = cfg
    return out
