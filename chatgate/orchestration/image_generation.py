# chatgate/orchestration/image_generation.py
from __future__ import annotations

import logging
import mimetypes
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from chatgate.providers.base import CoreMessage, ImageBackend
from chatgate.storage.attachments import AttachmentStore

log = logging.getLogger("app.image")

IMAGE_TOOL_NAME = "image_generation"
NO_PROMPT_MESSAGE = (
    "No prompt provided for image generation. Please provide a description of the image you want to create."
)

_ASPECT_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1536x1024",
    "4:3": "1536x1024",
    "3:2": "1536x1024",
    "9:16": "1024x1536",
    "3:4": "1024x1536",
    "2:3": "1024x1536",
}
_RESOLUTION_RE = re.compile(r"^\d+x\d+$")


def resolve_image_size(image_size: Optional[str], default: str = "1:1") -> Tuple[str, Optional[str]]:
    """Map an aspect (optionally ``-hd``) or ``WxH`` to a provider size and quality."""
    value = (image_size or default).strip()
    quality = None
    if value.endswith("-hd"):
        value, quality = value[: -len("-hd")], "hd"
    if _RESOLUTION_RE.match(value):
        return value, quality
    return _ASPECT_SIZES.get(value, _ASPECT_SIZES["1:1"]), quality


def prompt_from_history(messages: List[CoreMessage]) -> str:
    """Text of the latest user message."""
    for m in reversed(messages):
        if m.role != "user":
            continue
        if isinstance(m.content, str):
            return m.content.strip()
        return " ".join(c["text"] for c in m.content if c.get("type") == "text").strip()
    return ""


async def generate_and_store_image(
    *,
    backend: ImageBackend,
    store: AttachmentStore,
    prompt: str,
    image_size: str,
    model_id: str,
    user_id: str,
) -> Dict[str, Any]:
    size, quality = resolve_image_size(image_size)
    images = await backend.generate_images(prompt=prompt, size=size, quality=quality)
    assets: List[Dict[str, str]] = []
    for img in images:
        ext = mimetypes.guess_extension(img.mime_type) or ".png"
        key = f"generations/{user_id}/{uuid.uuid4().hex}{ext}"
        await store.upload(key, img.data, img.mime_type)
        assets.append({"imageUrl": key, "mimeType": img.mime_type})
    log.info({"event": "image.generated", "user_id": user_id, "model": model_id, "size": size, "count": len(assets)})
    return {"assets": assets, "prompt": prompt, "modelId": model_id}
