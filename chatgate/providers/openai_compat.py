# chatgate/providers/openai_compat.py
from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from chatgate.providers.base import CoreMessage, GeneratedImage, ProviderError, StreamEvent
from chatgate.utils.tokens import approx_tokens

log = logging.getLogger("app.provider")


def _data_uri(data: Any, mime_type: str) -> str:
    if isinstance(data, str):
        return data if data.startswith("data:") else f"data:{mime_type};base64,{data}"
    return f"data:{mime_type};base64,{base64.b64encode(bytes(data)).decode('ascii')}"


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    header, _, payload = uri.partition(",")
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    return mime_type, base64.b64decode(payload)


def to_wire_messages(messages: List[CoreMessage]) -> List[Dict[str, Any]]:
    """Convert CoreMessages into OpenAI chat-completions messages."""
    out: List[Dict[str, Any]] = []
    for m in messages:
        if isinstance(m.content, str):
            out.append({"role": m.role, "content": m.content})
            continue
        if m.role == "user":
            content: List[Dict[str, Any]] = []
            for c in m.content:
                if c["type"] == "text":
                    content.append({"type": "text", "text": c["text"]})
                elif c["type"] == "image":
                    url = _data_uri(c["image"], c.get("mime_type") or "image/png")
                    content.append({"type": "image_url", "image_url": {"url": url}})
                elif c["type"] == "file":
                    mime = c.get("mime_type") or "application/pdf"
                    content.append({
                        "type": "file",
                        "file": {"filename": c.get("filename") or "file", "file_data": _data_uri(c["data"], mime)},
                    })
            out.append({"role": "user", "content": content})
        elif m.role == "assistant":
            texts = [c["text"] for c in m.content if c["type"] == "text"]
            calls = [
                {
                    "id": c["tool_call_id"],
                    "type": "function",
                    "function": {"name": c["tool_name"], "arguments": json.dumps(c.get("args") or {}, ensure_ascii=False)},
                }
                for c in m.content if c["type"] == "tool-call"
            ]
            msg: Dict[str, Any] = {"role": "assistant", "content": "".join(texts) if texts else None}
            if calls:
                msg["tool_calls"] = calls
            if msg["content"] is None and not calls:
                continue
            out.append(msg)
        elif m.role == "tool":
            for c in m.content:
                if c["type"] != "tool-result":
                    continue
                result = c.get("result")
                out.append({
                    "role": "tool",
                    "tool_call_id": c["tool_call_id"],
                    "content": result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str),
                })
        else:
            text = "".join(c.get("text", "") for c in m.content if c["type"] == "text")
            out.append({"role": m.role, "content": text})
    return out


def normalize_usage(raw: Any) -> Dict[str, int]:
    usage = raw if isinstance(raw, dict) else {}

    def _int(v: Any) -> int:
        try:
            return int(v or 0)
        except (TypeError, ValueError):
            return 0

    details = usage.get("completion_tokens_details") or usage.get("output_tokens_details") or {}
    return {
        "prompt_tokens": _int(usage.get("prompt_tokens", usage.get("input_tokens"))),
        "completion_tokens": _int(usage.get("completion_tokens", usage.get("output_tokens"))),
        "reasoning_tokens": _int(details.get("reasoning_tokens") if isinstance(details, dict) else 0),
    }


class ToolCallAssembler:
    """Collects streamed ``tool_calls`` deltas (keyed by index) into complete calls."""

    def __init__(self) -> None:
        self.calls: Dict[int, Dict[str, Any]] = {}

    def feed(self, deltas: List[Dict[str, Any]]) -> None:
        for d in deltas:
            idx = int(d.get("index", len(self.calls)))
            slot = self.calls.setdefault(idx, {"id": None, "name": "", "arguments": ""})
            if d.get("id"):
                slot["id"] = d["id"]
            fn = d.get("function") or {}
            if fn.get("name"):
                slot["name"] += fn["name"]
            if fn.get("arguments"):
                slot["arguments"] += fn["arguments"]

    def finalize(self) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for idx in sorted(self.calls):
            slot = self.calls[idx]
            try:
                args = json.loads(slot["arguments"]) if slot["arguments"].strip() else {}
            except json.JSONDecodeError:
                args = {"_raw": slot["arguments"]}
            events.append(StreamEvent("tool-call", {
                "tool_call_id": slot["id"] or f"call_{idx}",
                "tool_name": slot["name"],
                "args": args,
            }))
        self.calls = {}
        return events


class OpenAICompatibleChat:
    modality = "text"

    def __init__(
        self,
        *,
        provider_id: str,
        base_url: str,
        api_key: Optional[str],
        model_id: str,
        timeout: float = 120.0,
    ) -> None:
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model_id = model_id
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(
        self,
        *,
        messages: List[CoreMessage],
        max_tokens: int = 256,
        temperature: float = 0.2,
    ) -> Tuple[str, Dict[str, int]]:
        payload = {
            "model": self.model_id,
            "messages": to_wire_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=self._headers())
        if resp.status_code >= 400:
            raise ProviderError(self.provider_id, resp.status_code, resp.text)
        data = resp.json()
        text = ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or ""
        return text, normalize_usage(data.get("usage"))

    async def stream(
        self,
        *,
        messages: List[CoreMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        wire_messages = to_wire_messages(messages)
        payload: Dict[str, Any] = {
            "model": self.model_id,
            "messages": wire_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = [
                {"type": "function", "function": {"name": t["name"], "description": t["description"], "parameters": t["parameters"]}}
                for t in tools
            ]
        payload.update(options or {})

        assembler = ToolCallAssembler()
        finish_reason: Optional[str] = None
        usage: Optional[Dict[str, int]] = None
        produced: List[str] = []

        log.info({"event": "provider.stream.start", "provider": self.provider_id, "model": self.model_id})
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload, headers=self._headers()
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="ignore")
                    raise ProviderError(self.provider_id, resp.status_code, body)
                async for line in resp.aiter_lines():
                    if abort is not None and abort.is_set():
                        finish_reason = "abort"
                        break
                    if not line or not line.startswith("data:"):
                        continue
                    data_str = line[len("data:"):].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        obj = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    if obj.get("error"):
                        err = obj["error"]
                        yield StreamEvent("error", {"message": err.get("message") if isinstance(err, dict) else str(err)})
                        continue
                    if obj.get("usage"):
                        usage = normalize_usage(obj["usage"])
                    choices = obj.get("choices") or []
                    if not choices:
                        continue
                    choice = choices[0] or {}
                    delta = choice.get("delta") or {}
                    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                    if isinstance(reasoning, str) and reasoning:
                        yield StreamEvent("reasoning-delta", {"text": reasoning})
                    content = delta.get("content")
                    if isinstance(content, str) and content:
                        produced.append(content)
                        yield StreamEvent("text-delta", {"text": content})
                    for image in delta.get("images") or []:
                        url = ((image or {}).get("image_url") or {}).get("url") or ""
                        if url.startswith("data:"):
                            mime_type, raw = decode_data_uri(url)
                            yield StreamEvent("file", {"mime_type": mime_type, "data": raw})
                    if delta.get("tool_calls"):
                        assembler.feed(delta["tool_calls"])
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

        for ev in assembler.finalize():
            yield ev
        if usage is None:
            # provider sent no usage block; estimate from what went over the wire
            prompt_text = json.dumps(wire_messages, ensure_ascii=False, default=str)
            usage = {
                "prompt_tokens": approx_tokens(prompt_text),
                "completion_tokens": approx_tokens("".join(produced)),
                "reasoning_tokens": 0,
            }
        yield StreamEvent("finish-step", {"finish_reason": finish_reason or "stop", "usage": usage})


class OpenAICompatibleImage:
    modality = "image"

    def __init__(
        self,
        *,
        provider_id: str,
        base_url: str,
        api_key: Optional[str],
        model_id: str,
        timeout: float = 120.0,
    ) -> None:
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model_id = model_id
        self.timeout = timeout

    async def generate_images(self, *, prompt: str, size: str, quality: Optional[str] = None) -> List[GeneratedImage]:
        payload: Dict[str, Any] = {"model": self.model_id, "prompt": prompt, "n": 1, "size": size}
        if self.model_id.startswith("dall-e"):
            payload["response_format"] = "b64_json"
        if quality:
            payload["quality"] = quality
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/images/generations", json=payload, headers=headers)
            if resp.status_code >= 400:
                raise ProviderError(self.provider_id, resp.status_code, resp.text)
            images: List[GeneratedImage] = []
            for item in resp.json().get("data") or []:
                if item.get("b64_json"):
                    images.append(GeneratedImage(base64.b64decode(item["b64_json"]), "image/png"))
                elif item.get("url"):
                    r = await client.get(item["url"])
                    r.raise_for_status()
                    images.append(GeneratedImage(r.content, r.headers.get("content-type", "image/png")))
        if not images:
            raise ProviderError(self.provider_id, 502, "image model returned no images")
        return images
