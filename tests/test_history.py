# tests/test_history.py
from __future__ import annotations

import copy
from types import SimpleNamespace

import httpx
import pytest

from chatgate.orchestration.history import PDF_UNSUPPORTED_MARKER, db_messages_to_core
from chatgate.providers.registry import PDF, VISION
from chatgate.storage.attachments import HttpAttachmentStore


def _msg(message_id: str, role: str, parts):
    return SimpleNamespace(message_id=message_id, role=role, parts=parts)


def _text(t: str):
    return {"type": "text", "text": t}


async def test_adjacent_user_messages_merge_oldest_first(store) -> None:
    rows = [_msg("u1", "user", [_text("first")]), _msg("u2", "user", [_text("second")])]
    out = await db_messages_to_core(rows, [], store)
    assert len(out) == 1
    assert [c["text"] for c in out[0].content] == ["first", "second"]


async def test_mapping_is_idempotent_and_does_not_mutate(store) -> None:
    rows = [
        _msg("u1", "user", [_text("hi")]),
        _msg("a1", "assistant", [_text("hello")]),
        _msg("u2", "user", [_text("again")]),
    ]
    before = copy.deepcopy([r.parts for r in rows])
    first = await db_messages_to_core(rows, [], store)
    second = await db_messages_to_core(rows, [], store)
    assert [(m.role, m.content) for m in first] == [(m.role, m.content) for m in second]
    assert [r.parts for r in rows] == before


async def test_tool_invocations_expand_in_order(store) -> None:
    inv = {"state": "result", "toolCallId": "c1", "toolName": "web_search", "args": {"query": "x"}, "result": {"r": 1}}
    pending = {"state": "call", "toolCallId": "c2", "toolName": "web_search", "args": {}}
    rows = [
        _msg("u1", "user", [_text("search")]),
        _msg("a1", "assistant", [
            {"type": "tool-invocation", "toolInvocation": inv},
            {"type": "tool-invocation", "toolInvocation": pending},
            _text("found it"),
        ]),
    ]
    out = await db_messages_to_core(rows, [], store)
    assert [m.role for m in out] == ["user", "assistant", "tool", "assistant"]
    assert out[1].message_id == "a1-tool-call"
    assert out[1].content == [{"type": "tool-call", "tool_call_id": "c1", "tool_name": "web_search", "args": {"query": "x"}}]
    assert out[2].content[0]["result"] == {"r": 1}
    assert out[3].content == [_text("found it")]


async def test_assistant_not_merged_into_tool_call(store) -> None:
    inv = {"state": "result", "toolCallId": "c1", "toolName": "t", "args": {}, "result": "ok"}
    rows = [
        _msg("a0", "assistant", [_text("older")]),
        _msg("a1", "assistant", [{"type": "tool-invocation", "toolInvocation": inv}]),
    ]
    out = await db_messages_to_core(rows, [], store)
    assert [m.message_id for m in out] == ["a0", "a1-tool-call", "a1-tool-result"]


async def test_one_failed_fetch_does_not_affect_the_others(store) -> None:
    refs = [f"attachments/u/{i}.png" for i in range(4)]
    store.objects.update({r: b"png" for r in refs})
    store.failing.add(refs[2])
    parts = [{"type": "file", "data": r, "mimeType": "image/png", "filename": f"{i}.png"} for i, r in enumerate(refs)]

    out = await db_messages_to_core([_msg("u1", "user", parts)], [VISION], store)
    content = out[0].content
    assert [c["type"] for c in content] == ["image", "image", "text", "image"]
    assert "Failed to fetch image file 2.png" in content[2]["text"]
    assert content[0]["image"] == b"png"


async def test_text_attachment_is_inlined(store) -> None:
    store.objects["attachments/u/notes.md"] = b"# notes"
    part = {"type": "file", "data": "attachments/u/notes.md", "mimeType": "text/markdown", "filename": "notes.md"}
    out = await db_messages_to_core([_msg("u1", "user", [part])], [], store)
    assert out[0].content[0]["text"] == '<file name="notes.md">\n# notes\n</file>'


async def test_pdf_depends_on_model_ability(store) -> None:
    store.objects["attachments/u/a.pdf"] = b"%PDF"
    part = {"type": "file", "data": "attachments/u/a.pdf", "mimeType": "application/pdf", "filename": "a.pdf"}

    without = await db_messages_to_core([_msg("u1", "user", [part])], [], store)
    assert without[0].content[0]["text"] == PDF_UNSUPPORTED_MARKER

    with_pdf = await db_messages_to_core([_msg("u1", "user", [part])], [PDF], store)
    assert with_pdf[0].content[0] == {"type": "file", "mime_type": "application/pdf", "filename": "a.pdf", "data": b"%PDF"}


async def test_generated_image_is_fetched_for_assistant(store) -> None:
    store.objects["generations/u/x.png"] = b"img"
    rows = [
        _msg("u1", "user", [_text("draw")]),
        _msg("a1", "assistant", [{"type": "file", "data": "generations/u/x.png", "mimeType": "image/png"}]),
    ]
    out = await db_messages_to_core(rows, [], store)
    assert out[1].content[0]["data"] == b"img"


@pytest.mark.respx(assert_all_called=False)
async def test_malformed_ref_becomes_marker_with_http_store(respx_mock) -> None:
    good = "attachments/u/ok.png"
    respx_mock.get(f"https://assets.test/chat/{good}").mock(return_value=httpx.Response(200, content=b"png"))
    store = HttpAttachmentStore("https://assets.test/chat")
    parts = [
        {"type": "file", "data": "attachments/bad\x00name.png", "mimeType": "image/png"},
        {"type": "file", "data": good, "mimeType": "image/png"},
    ]

    out = await db_messages_to_core([_msg("u1", "user", parts)], [VISION], store)
    content = out[0].content
    assert [c["type"] for c in content] == ["text", "image"]
    assert "Failed to fetch image file" in content[0]["text"]
    assert content[1]["image"] == b"png"


async def test_unexpected_store_error_becomes_marker(store) -> None:
    async def broken(url: str) -> bytes:
        raise RuntimeError("connection pool closed")

    store.fetch = broken
    part = {"type": "file", "data": "attachments/u/a.txt", "mimeType": "text/plain", "filename": "a.txt"}
    out = await db_messages_to_core([_msg("u1", "user", [part])], [], store)
    assert len(out[0].content) == 1
    assert "Failed to fetch text file a.txt" in out[0].content[0]["text"]
