# chatgate/storage/attachments.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional, Protocol

import httpx

from chatgate.core.settings import get_settings

log = logging.getLogger("app.attachments")


class AttachmentFetchError(Exception):
    """An attachment could not be read from object storage."""


class AttachmentStore(Protocol):
    async def get_url(self, ref: str) -> str: ...

    async def fetch(self, url: str) -> bytes: ...

    async def upload(self, key: str, data: bytes, mime_type: str) -> str: ...


class HttpAttachmentStore:
    """Object storage reachable over plain HTTP (GET/PUT on ``{base_url}/{key}``)."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def get_url(self, ref: str) -> str:
        return f"{self.base_url}/{ref.lstrip('/')}"

    async def fetch(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=self._headers())
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPStatusError as e:
            raise AttachmentFetchError(f"{e.response.status_code} {e.response.reason_phrase}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AttachmentFetchError(str(e)) from e

    async def upload(self, key: str, data: bytes, mime_type: str) -> str:
        url = await self.get_url(key)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.put(url, content=data, headers={**self._headers(), "Content-Type": mime_type})
            resp.raise_for_status()
        log.info({"event": "attachment.upload", "key": key, "bytes": len(data), "mime_type": mime_type})
        return key


@lru_cache(maxsize=1)
def get_attachment_store() -> HttpAttachmentStore:
    s = get_settings()
    return HttpAttachmentStore(s.attachments_base_url, s.attachments_token, s.attachments_timeout_sec)
