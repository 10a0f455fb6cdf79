# tests/test_generation_helpers.py
from __future__ import annotations

from datetime import datetime, timezone

from chatgate.orchestration.image_generation import generate_and_store_image, prompt_from_history, resolve_image_size
from chatgate.orchestration.prompt import build_system_prompt
from chatgate.orchestration.redactor import mask_key, mask_provider_keys
from chatgate.orchestration.title import clean_title
from chatgate.providers.base import CoreMessage, GeneratedImage
from chatgate.utils.document_html import get_document_html
from chatgate.utils.files import filename_from_key


def test_image_size_mapping() -> None:
    assert resolve_image_size("16:9") == ("1536x1024", None)
    assert resolve_image_size("9:16-hd") == ("1024x1536", "hd")
    assert resolve_image_size("512x512") == ("512x512", None)
    assert resolve_image_size(None) == ("1024x1024", None)
    assert resolve_image_size("weird") == ("1024x1024", None)


def test_prompt_is_latest_user_text() -> None:
    history = [
        CoreMessage("user", "a red bicycle"),
        CoreMessage("assistant", [{"type": "text", "text": "here"}]),
        CoreMessage("user", [{"type": "text", "text": "now make it blue"}]),
    ]
    assert prompt_from_history(history) == "now make it blue"
    assert prompt_from_history([CoreMessage("assistant", "x")]) == ""


class _FakeImageBackend:
    provider_id = "openai"
    model_id = "gpt-image-1"
    modality = "image"

    def __init__(self) -> None:
        self.calls = []

    async def generate_images(self, *, prompt, size, quality=None):
        self.calls.append((prompt, size, quality))
        return [GeneratedImage(b"img", "image/png")]


async def test_generate_and_store_image(store) -> None:
    backend = _FakeImageBackend()
    out = await generate_and_store_image(
        backend=backend, store=store, prompt="a cat", image_size="1:1-hd", model_id="gpt-image-1", user_id="u"
    )
    assert backend.calls == [("a cat", "1024x1024", "hd")]
    assert out["prompt"] == "a cat" and out["modelId"] == "gpt-image-1"
    key = out["assets"][0]["imageUrl"]
    assert key.startswith("generations/u/") and store.objects[key] == b"img"


def test_system_prompt_mentions_enabled_tools_only() -> None:
    now = datetime(2025, 10, 19, tzinfo=timezone.utc)
    text = build_system_prompt(["web_search"], {"name": "Ada"}, now=now)
    assert "Sunday, October 19, 2025" in text
    assert "Ada" in text
    assert "web_search" in text
    assert "get_current_document" not in text


def test_clean_title() -> None:
    assert clean_title('  "Trip to   Rome."  ', 50) == "Trip to Rome"
    assert len(clean_title("x" * 80, 20)) == 20


def test_masking() -> None:
    assert mask_key("sk-abcdefghijkl1234") == "sk-********1234"
    assert mask_key("short") == "********"
    assert mask_provider_keys({"openai": {"key": "sk-abcdefghijkl1234", "enabled": True}}) == {
        "openai": {"key": "sk-********1234", "enabled": True},
    }


def test_document_html_scrubs_inline_payloads() -> None:
    doc = {"type": "doc", "content": [
        {"type": "image", "attrs": {"src": "data:image/png;base64,AAAA", "alt": "a"}},
        {"type": "image", "attrs": {"src": "blob:http://x/123", "alt": "b"}},
    ]}
    html = get_document_html(doc)
    assert "base64" not in html.replace("[base64 omitted]", "")
    assert "[blob omitted]" in html
    assert get_document_html("not json") is None


def test_filename_from_key() -> None:
    key = "attachments/u/" + "x" * 51 + "report.pdf"
    assert filename_from_key(key) == "report.pdf"
    assert filename_from_key("generations/u/a.png") == ""
