# chatgate/providers/base.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple, Union


@dataclass
class CoreMessage:
    """A backend-ready message. ``content`` is a string or a list of typed content dicts.

    Content item types: ``text``, ``image`` (bytes), ``file`` (bytes or str), ``reasoning``,
    ``tool-call`` and ``tool-result``.
    """

    role: str  # system|user|assistant|tool
    content: Union[str, List[Dict[str, Any]]]
    message_id: str = ""


@dataclass
class StreamEvent:
    """One event of a backend's internal stream.

    ``text-delta``/``reasoning-delta`` carry ``text``; ``tool-call`` carries ``tool_call_id``,
    ``tool_name`` and ``args``; ``tool-result`` adds ``result``; ``file`` carries ``mime_type``
    and ``data``; ``finish-step`` carries ``finish_reason`` and ``usage``; ``error`` carries
    ``message``.
    """

    type: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


class ProviderError(Exception):
    def __init__(self, provider: str, status: int, detail: str) -> None:
        super().__init__(f"{provider} error {status}: {detail}")
        self.provider = provider
        self.status = status
        self.detail = detail


class ChatBackend(Protocol):
    provider_id: str
    model_id: str
    modality: str  # "text"

    def stream(
        self,
        *,
        messages: List[CoreMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield events for a single model step (no tool execution)."""
        ...

    async def generate(
        self,
        *,
        messages: List[CoreMessage],
        max_tokens: int = 256,
        temperature: float = 0.2,
    ) -> Tuple[str, Dict[str, int]]:
        """Return assistant text and usage for a non-streamed call."""
        ...


class ImageBackend(Protocol):
    provider_id: str
    model_id: str
    modality: str  # "image"

    async def generate_images(self, *, prompt: str, size: str, quality: Optional[str] = None) -> List[GeneratedImage]:
        ...


Backend = Union[ChatBackend, ImageBackend]
