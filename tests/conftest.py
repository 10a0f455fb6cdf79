# tests/conftest.py
from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional, Set, Tuple

# Must be set before chatgate.storage.database creates its engine
os.environ["DB_URL"] = "sqlite:///:memory:"
os.environ["INTERNAL_OPENAI_API_KEY"] = "sk-internal-test"
os.environ["OPENAI_BASE_URL"] = "https://api.openai.test/v1"
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["ATTACHMENTS_BASE_URL"] = "https://assets.test/chat"
os.environ["STREAM_HEARTBEAT_SEC"] = "5"

import pytest

from chatgate.core.settings import get_settings
from chatgate.orchestration.resumable import STREAMS
from chatgate.storage.attachments import AttachmentFetchError, get_attachment_store
from chatgate.storage.database import engine
from chatgate.storage.models import Base


class MemoryStore:
    """In-memory attachment store; refs listed in ``failing`` cannot be fetched."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None, failing: Iterable[str] = ()) -> None:
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.failing: Set[str] = set(failing)
        self.uploads: List[Tuple[str, bytes, str]] = []
        self.fail_uploads = False

    async def get_url(self, ref: str) -> str:
        return f"mem://{ref}"

    async def fetch(self, url: str) -> bytes:
        ref = url[len("mem://"):]
        if ref in self.failing or ref not in self.objects:
            raise AttachmentFetchError(f"404 Not Found: {ref}")
        return self.objects[ref]

    async def upload(self, key: str, data: bytes, mime_type: str) -> str:
        if self.fail_uploads:
            raise RuntimeError("bucket unavailable")
        self.uploads.append((key, data, mime_type))
        self.objects[key] = data
        return key


@pytest.fixture(autouse=True)
def _fresh_state():
    get_settings.cache_clear()
    get_attachment_store.cache_clear()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    STREAMS.streams.clear()
    STREAMS.latest_by_thread.clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
